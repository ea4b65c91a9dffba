"""
Chatbot API: a conversational chat service backed by an LLM completion provider.
"""

__version__ = "1.0.0"
