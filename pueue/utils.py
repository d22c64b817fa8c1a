"""
Small helpers shared across modules.
"""

from datetime import UTC, datetime, timedelta
from importlib import import_module
from typing import Any


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def after_ms(moment: datetime, milliseconds: int) -> datetime:
    """Return `moment` shifted by a number of milliseconds."""
    return moment + timedelta(milliseconds=milliseconds)


def import_string(path: str) -> Any:
    """
    Import an attribute given as "package.module:attribute".

    Args:
        path: Dotted module path and attribute name separated by a colon.

    Returns:
        The imported attribute.

    Raises:
        ImportError: If the path is malformed or the attribute does not exist.
    """
    module_path, _, attribute = path.partition(":")
    if not module_path or not attribute:
        raise ImportError(f"Expected 'module:attribute', got '{path}'")

    module = import_module(module_path)
    try:
        return getattr(module, attribute)
    except AttributeError as e:
        raise ImportError(f"Module '{module_path}' has no attribute '{attribute}'") from e
