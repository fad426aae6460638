"""
Utility functions for telemetry data processing.

This module provides shared helpers used across the agent, views,
serializers and the consolidation engine.
"""
import base64
import binascii
import logging
import re
import secrets
import string
from collections.abc import Mapping
from typing import Any

logger = logging.getLogger(__name__)

_DATA_URL_PREFIX = re.compile(r'^data:image/\w+;base64,')
_UNSAFE_FILENAME_CHARS = re.compile(r'[^A-Za-z0-9_.-]')
_DEVICE_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_device_id() -> str:
    """
    Generate a per-session device identifier.

    Returns:
        Identifier of the form ``user_`` followed by 7 base-36 characters
    """
    suffix = ''.join(secrets.choice(_DEVICE_ID_ALPHABET) for _ in range(7))
    return f"user_{suffix}"


def encode_data_url(image: bytes, mime_type: str = 'image/jpeg') -> str:
    """Encode raw image bytes as a base64 data URL."""
    return f"data:{mime_type};base64,{base64.b64encode(image).decode('ascii')}"


def decode_data_url(value: str) -> bytes:
    """
    Decode a base64 image, with or without its ``data:image/...`` prefix.

    Args:
        value: Data URL or bare base64 text

    Returns:
        Decoded image bytes

    Raises:
        ValueError: If the payload is not valid base64
    """
    payload = _DATA_URL_PREFIX.sub('', value.strip(), count=1)
    try:
        return base64.b64decode(payload, validate=True)
    except binascii.Error as e:
        raise ValueError(f"Expected base64 image data, got undecodable payload: {e}") from e


def safe_filename_component(value: str) -> str:
    """Reduce an identifier to characters that are safe in a file name."""
    cleaned = _UNSAFE_FILENAME_CHARS.sub('_', value).strip('._')
    return cleaned or 'unknown'


def get_client_ip(meta: Mapping[str, Any]) -> str | None:
    """
    Extract the client IP address from a request's META mapping.

    Honours ``X-Forwarded-For`` when the server sits behind a proxy.

    Args:
        meta: ``request.META`` of an incoming HTTP request

    Returns:
        IP address string, or None when the request carries none
    """
    x_forwarded_for = meta.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        return str(x_forwarded_for).split(',')[0].strip()
    remote_addr = meta.get('REMOTE_ADDR')
    return str(remote_addr) if remote_addr else None
