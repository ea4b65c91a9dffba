"""
FastAPI application for the Chatbot API.
"""

from .app import create_app, setup_api_logging

__all__ = ["create_app", "setup_api_logging"]
