"""Transports for the bounded advisory call.

Importing this package registers the ``fake`` and ``llama`` backends.
"""

from .fake import FakeBackend
from .llama_server import LlamaServerBackend
from .registry import (
    DEFAULT_BACKEND_ENV,
    Backend,
    get_backend,
    list_backends,
    register_backend,
    resolve_backend_name,
)

__all__ = [
    "DEFAULT_BACKEND_ENV",
    "Backend",
    "FakeBackend",
    "LlamaServerBackend",
    "get_backend",
    "list_backends",
    "register_backend",
    "resolve_backend_name",
]
