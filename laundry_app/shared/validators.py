"""Shared validation utilities"""

from typing import Optional

PLACEHOLDER_API_KEY = "YOUR_API_KEY_HERE"  # noqa: S105 - placeholder, not a secret


def validate_latitude(value: float) -> float:
    """
    Validate a latitude in decimal degrees.

    Raises:
        ValueError: If the value is outside [-90, 90]
    """
    if value is None or not -90.0 <= float(value) <= 90.0:
        raise ValueError("Latitude must be between -90 and 90")
    return float(value)


def validate_longitude(value: float) -> float:
    """
    Validate a longitude in decimal degrees.

    Raises:
        ValueError: If the value is outside [-180, 180]
    """
    if value is None or not -180.0 <= float(value) <= 180.0:
        raise ValueError("Longitude must be between -180 and 180")
    return float(value)


def validate_api_key_format(key: Optional[str]) -> bool:
    """Google API keys start with 'AIza' and are longer than 30 characters"""
    return bool(key and len(key) > 30 and key.startswith("AIza"))


def is_usable_api_key(key: Optional[str]) -> bool:
    return bool(key and key.strip() and key != PLACEHOLDER_API_KEY)


def mask_api_key(key: Optional[str]) -> str:
    """Mask an API key for logging"""
    if not key:
        return "None"
    return f"{key[:10]}..."


def format_coordinates(latitude: float, longitude: float, precision: int = 4) -> str:
    """Human readable coordinate pair, e.g. '40.0000, -75.0000'"""
    return f"{latitude:.{precision}f}, {longitude:.{precision}f}"
