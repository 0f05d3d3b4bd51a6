"""
Identifier generation for game entities.
"""

import secrets


def generate_id() -> str:
    """
    Generate a short opaque identifier.

    Eight random bytes, URL-safe base64 encoded (11 characters).
    """
    return secrets.token_urlsafe(8)
