"""
Input validation utilities for the Chatbot API.

Validates what callers send before anything is written to the store, so a
rejected request never leaves partial state behind.
"""

import re
from typing import Any

from ..core.exceptions import ValidationError
from ..core.models import DEFAULT_OWNER_ID


class InputSanitizer:
    """Validation and normalization of user-supplied values."""

    MAX_MESSAGE_LENGTH = 50000
    MAX_OWNER_ID_LENGTH = 128
    MAX_MODEL_NAME_LENGTH = 100

    # Control characters other than tab, newline and carriage return
    CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
    OWNER_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.@:\-]*$")
    MODEL_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9\-_./:]*[a-zA-Z0-9]$|^[a-zA-Z0-9]$")

    def sanitize_message(self, text: Any) -> str:
        """
        Validate the text of a user message.

        Args:
            text: Raw message text from the request

        Returns:
            Message text with control characters removed and outer whitespace stripped

        Raises:
            ValidationError: If the message is missing, empty or too long
        """
        if text is None:
            raise ValidationError("Message is required")
        if not isinstance(text, str):
            raise ValidationError("Message must be a string")

        cleaned = self.CONTROL_CHARS.sub("", text).strip()
        if not cleaned:
            raise ValidationError("Message is required")

        if len(cleaned) > self.MAX_MESSAGE_LENGTH:
            raise ValidationError(
                f"Message exceeds maximum length of {self.MAX_MESSAGE_LENGTH} characters"
            )

        return cleaned

    def sanitize_owner_id(self, owner_id: Any) -> str:
        """Normalize an owner id, falling back to the anonymous owner."""
        if owner_id is None:
            return DEFAULT_OWNER_ID
        if not isinstance(owner_id, str):
            raise ValidationError("User id must be a string")

        cleaned = owner_id.strip()
        if not cleaned:
            return DEFAULT_OWNER_ID

        if len(cleaned) > self.MAX_OWNER_ID_LENGTH:
            raise ValidationError(
                f"User id exceeds maximum length of {self.MAX_OWNER_ID_LENGTH}"
            )
        if not self.OWNER_ID_PATTERN.match(cleaned):
            raise ValidationError("User id contains invalid characters")

        return cleaned

    def validate_model_name(self, model_name: str) -> str:
        """
        Validate a model identifier.

        Raises:
            ValidationError: If model name is invalid
        """
        if not isinstance(model_name, str):
            raise ValidationError("Model name must be a string")

        model_name = model_name.strip()
        if not model_name:
            raise ValidationError("Model name cannot be empty")

        if len(model_name) > self.MAX_MODEL_NAME_LENGTH:
            raise ValidationError(
                f"Model name exceeds maximum length of {self.MAX_MODEL_NAME_LENGTH}"
            )

        if not self.MODEL_NAME_PATTERN.match(model_name):
            raise ValidationError(f"Invalid model name format: {model_name}")

        return model_name


# Global sanitizer instance
_sanitizer = InputSanitizer()


def sanitize_message(text: Any) -> str:
    """Global function to validate message text."""
    return _sanitizer.sanitize_message(text)


def sanitize_owner_id(owner_id: Any) -> str:
    """Global function to normalize owner ids."""
    return _sanitizer.sanitize_owner_id(owner_id)


def validate_model_name(model_name: str) -> str:
    """Global function to validate model names."""
    return _sanitizer.validate_model_name(model_name)
