"""
Command line interface for the Chatbot API.
"""

from .main import app

__all__ = ["app"]
