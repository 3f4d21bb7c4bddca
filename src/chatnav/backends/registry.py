from __future__ import annotations

import os
from collections.abc import Callable
from typing import Any, Protocol

DEFAULT_BACKEND_ENV = "CHATNAV_BACKEND"


class Backend(Protocol):
    """Advisory model transport. Returns raw model text for one prompt."""

    def complete(self, prompt: str, params: dict[str, Any] | None = None) -> str:
        ...


_BACKENDS: dict[str, Callable[..., Backend]] = {}


def register_backend(name: str, factory: Callable[..., Backend]) -> None:
    key = name.lower()
    if key in _BACKENDS:
        raise ValueError(f"Advisory backend '{name}' is already registered")
    _BACKENDS[key] = factory


def get_backend(name: str, **kwargs: Any) -> Backend:
    key = name.lower()
    factory = _BACKENDS.get(key)
    if factory is None:
        available = ", ".join(list_backends())
        raise ValueError(f"Unknown advisory backend '{name}'. Available backends: {available}")
    return factory(**kwargs)


def list_backends() -> list[str]:
    return sorted(_BACKENDS)


def resolve_backend_name(name: str | None = None) -> str | None:
    """Explicit name wins over ``CHATNAV_BACKEND``; ``None`` means no advisory calls."""
    if name:
        return name
    env_name = os.getenv(DEFAULT_BACKEND_ENV, "").strip()
    return env_name or None
