"""
Entry point for running the Chatbot API as a module.

This allows users to run: python -m chatbot_api
"""

from chatbot_api.cli.main import app

if __name__ == "__main__":
    app()
