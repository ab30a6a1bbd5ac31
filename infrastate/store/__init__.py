"""
Remote record stores.

All engine entry points take a RecordStore explicitly; build one with
store_from_settings() at the edges.
"""

from typing import Optional

from ..errors import ConfigurationError
from ..settings import InfrastateSettings, get_settings
from .base import RecordStore, matches_selector, parse_label_selector
from .kubectl import KubectlRecordStore
from .memory import FileRecordStore, InMemoryRecordStore


def store_from_settings(settings: Optional[InfrastateSettings] = None) -> RecordStore:
    """
    Build the store selected by settings.store_backend.

    Raises:
        ConfigurationError: Unknown backend
    """
    settings = settings or get_settings()
    backend = settings.store_backend.lower()
    if backend == "kubectl":
        return KubectlRecordStore(
            kubectl_binary=settings.kubectl_binary,
            kubeconfig=settings.kubeconfig,
            context=settings.kube_context,
            timeout=settings.kubectl_timeout,
        )
    if backend == "file":
        return FileRecordStore(settings.store_file)
    raise ConfigurationError(f"unknown store backend {settings.store_backend!r} (expected kubectl or file)")


__all__ = [
    "RecordStore",
    "InMemoryRecordStore",
    "FileRecordStore",
    "KubectlRecordStore",
    "matches_selector",
    "parse_label_selector",
    "store_from_settings",
]
