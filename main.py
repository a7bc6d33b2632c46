#!/usr/bin/env python3
"""
Command-line host for the conversation sync engine.
Connects to the chat server, joins one conversation and prints it as it changes.
"""

import argparse
import logging
import sys
from typing import List, Optional

from config import CHAT_SERVER_URL, CHAT_AUTH_TOKEN, LOG_LEVEL
from activity.client import SocketIOClient
from activity.session import ConversationSession
from messaging.errors import ConversationError
from messaging.scroll import MutationKind, ScrollDecision

logger = logging.getLogger(__name__)


# Logging Setup
def setup_logging(level_str: str = "INFO"):
    """Configures application logging."""
    log_level = logging.getLevelName(level_str.upper())
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        force=True
    )
    # The Socket.IO stack is chatty at INFO
    logging.getLogger("socketio").setLevel(logging.WARNING)
    logging.getLogger("engineio").setLevel(logging.WARNING)
    logger.info(f"Logging configured at level: {logging.getLevelName(log_level)}")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Follow a single chat conversation from the terminal.")
    parser.add_argument("--url", default=CHAT_SERVER_URL, help="Chat server URL")
    parser.add_argument("--token", default=CHAT_AUTH_TOKEN, help="Auth token sent on connect")
    parser.add_argument("--user-id", required=True, help="Id of the local user")
    parser.add_argument("--conversation", required=True, help="Id of the conversation to join")
    parser.add_argument("--log-level", default=LOG_LEVEL, help="Logging level")
    return parser.parse_args(argv)


class ConsoleView:
    """Prints the conversation after each change."""

    def __init__(self, session: ConversationSession):
        self.session = session

    def render(self, kind: MutationKind, decision: ScrollDecision) -> None:
        conversation = self.session.conversation
        if conversation is None:
            return
        if kind is MutationKind.PREPEND or kind is MutationKind.INIT:
            print(f"--- {len(conversation.store)} messages ---")
            for row in conversation.render_rows():
                self._print_row(row)
        elif kind is MutationKind.APPEND:
            self._print_row(conversation.render_rows()[-1])
        if conversation.pagination.end_of_history and kind is MutationKind.PREPEND:
            print("--- Chat started ---")

    @staticmethod
    def _print_row(row) -> None:
        if row["day_banner"]:
            print(f"== {row['day_banner']} ==")
        if row["unread_banner"]:
            print("-- Unread messages --")
        who = "me" if row["is_own"] else "them"
        suffix = ""
        if row["time"]:
            suffix = f"  [{row['time']}{' . ' + row['status'] if row['status'] else ''}]"
        print(f"{who}> {row['body']}{suffix}")

    @staticmethod
    def notice(text: str) -> None:
        print(f"! {text}", file=sys.stderr)

    @staticmethod
    def error(error: ConversationError) -> None:
        print(f"! {error.status} - {error.message}", file=sys.stderr)


def run(args: argparse.Namespace) -> int:
    client = SocketIOClient(url=args.url, auth_token=args.token)
    session = ConversationSession(client, args.user_id)
    view = ConsoleView(session)
    session.on_change = view.render
    session.on_notice = view.notice
    session.on_error = view.error

    if not client.connect():
        logger.error("Could not connect to the chat server")
        return 1

    session.join(args.conversation)
    try:
        for line in sys.stdin:
            text = line.rstrip("\n")
            if session.conversation is None:
                break
            if text == "/quit":
                break
            elif text == "/more":
                session.request_older()
            elif text == "/read":
                session.mark_all_read()
            elif text == "/archive":
                session.archive_chat()
            elif text == "/delete":
                session.delete_chat()
            else:
                session.send_message(text)
    except KeyboardInterrupt:
        pass
    finally:
        session.leave()
        client.close()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)
    return run(args)


if __name__ == "__main__":
    sys.exit(main())
