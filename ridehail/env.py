"""Typed readers for environment variables used by ``config.Settings``."""
from __future__ import annotations

import os
from typing import Callable, Iterable, List, Optional, TypeVar

T = TypeVar("T")

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def _raw(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _parsed(name: str, default: T, parse: Callable[[str], T], kind: str) -> T:
    value = _raw(name)
    if value is None:
        return default
    try:
        return parse(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be {kind}, got {value!r}") from exc


def _bool(value: str) -> bool:
    lowered = value.lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ValueError(value)


def env_bool(name: str, *, default: bool = False) -> bool:
    return _parsed(name, default, _bool, "a boolean")


def env_int(name: str, default: int) -> int:
    return _parsed(name, default, int, "an integer")


def env_float(name: str, default: float) -> float:
    return _parsed(name, default, float, "a number")


def env_list(name: str, *, default: Iterable[str] | None = None, separator: str = ",") -> List[str]:
    """Comma separated list; an unset variable yields ``default``, a blank one yields []."""
    value = os.getenv(name)
    if value is None:
        return list(default or [])
    return [item.strip() for item in value.split(separator) if item.strip()]
