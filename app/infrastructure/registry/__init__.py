"""SACS professional registry integration (headless browser automation)."""

from app.infrastructure.registry.base import RegistrySearcher
from app.infrastructure.registry.browser_pool import BrowserPagePool
from app.infrastructure.registry.config import registry_settings
from app.infrastructure.registry.parser import parse_registry_rows
from app.infrastructure.registry.sacs_searcher import PlaywrightRegistrySearcher

__all__ = [
    "BrowserPagePool",
    "PlaywrightRegistrySearcher",
    "RegistrySearcher",
    "parse_registry_rows",
    "registry_settings",
]
