"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules.
"""

from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from conversation.registry import SessionRegistry
    from integrations.web_app import BusinessDirectory


@lru_cache(maxsize=1)
def _registry_factory() -> SessionRegistry:
    # Lazy import so provider clients are only built when the first call arrives.
    from conversation.registry import SessionRegistry
    from conversation.services import build_services

    return SessionRegistry(build_services())


def get_registry() -> SessionRegistry:
    return _registry_factory()


def registry_created() -> bool:
    return _registry_factory.cache_info().currsize > 0


@lru_cache(maxsize=1)
def _directory_factory() -> BusinessDirectory:
    from integrations.web_app import BusinessDirectory

    return BusinessDirectory()


def get_directory() -> BusinessDirectory:
    return _directory_factory()
