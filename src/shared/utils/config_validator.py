"""
Configuration validation utilities.

Provides helpers for reading typed settings from the environment with
clear error messages. Batch jobs read their tuning knobs (batch size,
delays, time limits) through these functions.
"""

import os
from typing import Optional


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def validate_int_env(name: str, default: Optional[int] = None, min_value: Optional[int] = None,
                     max_value: Optional[int] = None) -> int:
    """
    Validate an integer environment variable.

    Args:
        name: Environment variable name
        default: Default value if not set
        min_value: Minimum allowed value
        max_value: Maximum allowed value

    Returns:
        The validated integer value

    Raises:
        ConfigurationError: If the value is invalid
    """
    value_str = os.getenv(name)

    if not value_str:
        if default is None:
            raise ConfigurationError(f"Missing required integer environment variable: {name}")
        return default

    try:
        value = int(value_str)
    except ValueError:
        raise ConfigurationError(
            f"Invalid integer value for {name}: '{value_str}'\n"
            f"Expected an integer value."
        )

    _check_bounds(name, value, min_value, max_value)
    return value


def validate_float_env(name: str, default: Optional[float] = None,
                       min_value: Optional[float] = None,
                       max_value: Optional[float] = None,
                       allow_none: bool = False) -> Optional[float]:
    """
    Validate a numeric (seconds, ratios) environment variable.

    With ``allow_none`` the literal values ``none`` and ``off`` return None
    so a limit can be disabled from the environment.

    Raises:
        ConfigurationError: If the value is not a number, out of range, or
            ``none``/``off`` where a value is required
    """
    value_str = os.getenv(name)

    if not value_str:
        return default

    if value_str.strip().lower() in ("none", "off"):
        if allow_none:
            return None
        raise ConfigurationError(f"{name} cannot be disabled; expected a number of seconds.")

    try:
        value = float(value_str)
    except ValueError:
        raise ConfigurationError(
            f"Invalid numeric value for {name}: '{value_str}'\n"
            f"Expected a number of seconds."
        )

    _check_bounds(name, value, min_value, max_value)
    return value


def _check_bounds(name, value, min_value, max_value) -> None:
    if min_value is not None and value < min_value:
        raise ConfigurationError(
            f"Value for {name} ({value}) is below minimum allowed value ({min_value})"
        )

    if max_value is not None and value > max_value:
        raise ConfigurationError(
            f"Value for {name} ({value}) exceeds maximum allowed value ({max_value})"
        )
