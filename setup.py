from setuptools import setup, find_packages

setup(
    name="chat_sync",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["config", "main"],
    install_requires=[
        "python-socketio[client]",
        "python-dotenv",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-mock",
        ],
    },
    entry_points={
        "console_scripts": [
            "chat-sync=main:main",
        ],
    },
    python_requires=">=3.8",
)
