"""Generated output validation functions."""

from typing import Optional


def validate_plan_html(text: Optional[str]) -> bool:
    """
    Check that generated output looks like an HTML document.

    Args:
        text: Raw output text from the generation service

    Returns:
        True if the stripped text is non-empty and starts with a tag
    """
    if not text:
        return False

    stripped = text.strip()
    return bool(stripped) and stripped.startswith("<")
