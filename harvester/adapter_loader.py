"""
Adapter loader for automatic discovery and registration of site adapters.
"""

import importlib
import inspect
import logging
import pkgutil
from typing import Dict, List, Optional, Type

from .interfaces import SiteAdapter
from .models import EventSource, ScrapedEvent

logger = logging.getLogger(__name__)

ADAPTER_PACKAGE = "adapters"

# Global registry of discovered adapter classes, keyed by adapter name
_REGISTRY: Dict[str, Type[SiteAdapter]] = {}


def refresh_registry() -> None:
    """Import every module in the adapter package and register concrete SiteAdapter subclasses."""
    _REGISTRY.clear()

    package = importlib.import_module(ADAPTER_PACKAGE)
    module_count = 0

    for info in pkgutil.iter_modules(package.__path__):
        if info.name.startswith("_"):
            continue
        full_name = f"{ADAPTER_PACKAGE}.{info.name}"
        try:
            mod = importlib.import_module(full_name)
        except Exception as e:
            logger.error(f"Failed to load adapter module {full_name}: {e}")
            continue
        module_count += 1

        for _, obj in inspect.getmembers(mod, inspect.isclass):
            if (issubclass(obj, SiteAdapter)
                    and not inspect.isabstract(obj)
                    and obj.__module__ == mod.__name__):
                _REGISTRY[obj.name] = obj
                logger.debug(f"Registered adapter: {obj.name}")

    logger.info(f"Adapter discovery complete: {module_count} modules, {len(_REGISTRY)} adapters")


def list_available() -> Dict[str, Type[SiteAdapter]]:
    """Get a copy of all registered adapters."""
    if not _REGISTRY:
        refresh_registry()
    return _REGISTRY.copy()


def load_adapters() -> List[SiteAdapter]:
    """One instance of every registered adapter, in dispatch order."""
    return sorted((cls() for cls in list_available().values()), key=lambda a: (a.priority, a.name))


class AdapterDispatcher:
    """Routes a page to the adapters that claim its source.

    Claiming adapters run in priority order and the first non-empty result
    wins, so a hand-tuned adapter that finds nothing still falls through to
    the generic one.
    """

    def __init__(self, adapters: Optional[List[SiteAdapter]] = None):
        adapters = adapters if adapters is not None else load_adapters()
        self.adapters = sorted(adapters, key=lambda a: (a.priority, a.name))

    def candidates_for(self, source: EventSource) -> List[SiteAdapter]:
        return [a for a in self.adapters if a.matches(source)]

    def extract(
        self,
        html: str,
        source: EventSource,
        *,
        filter_enabled: bool = False,
        fetch_method: Optional[str] = None,
    ) -> List[ScrapedEvent]:
        candidates = self.candidates_for(source)
        if not candidates:
            logger.warning(f"No adapter claims {source.name} ({source.url})")
            return []

        for adapter in candidates:
            events = adapter.extract(html, source, filter_enabled=filter_enabled, fetch_method=fetch_method)
            if events:
                logger.debug(f"{source.name}: {adapter.name} extracted {len(events)} events")
                return events
            logger.debug(f"{source.name}: {adapter.name} found nothing")
        return []
