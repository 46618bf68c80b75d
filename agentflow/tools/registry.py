from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, Tuple, Union

import httpx

from ..core.config import Settings
from .apify import ApifyScrapeAdapter
from .base import ToolAdapter, ToolName
from .browseai import BrowseAIScrapeAdapter
from .search import TavilySearchAdapter

__all__ = ["KnownTool", "UnknownTool", "ResolvedTool", "ToolRegistry", "build_tool_registry"]


@dataclass(slots=True, frozen=True)
class KnownTool:
    name: ToolName
    adapter: ToolAdapter

    @property
    def is_scraper(self) -> bool:
        return self.name.is_scraper


@dataclass(slots=True, frozen=True)
class UnknownTool:
    requested: str


ResolvedTool = Union[KnownTool, UnknownTool]


class ToolRegistry:
    """Closed mapping from ``ToolName`` to adapters.

    Plan content is untyped; ``resolve`` is where a requested name becomes either a
    known tool or an explicit unknown-tool variant. Matching is exact.
    """

    def __init__(self, adapters: Iterable[ToolAdapter] = ()) -> None:
        self._adapters: dict[ToolName, ToolAdapter] = {}
        for adapter in adapters:
            self.register(adapter)

    def register(self, adapter: ToolAdapter) -> None:
        self._adapters[adapter.name] = adapter

    def resolve(self, requested: str) -> ResolvedTool:
        try:
            name = ToolName(requested)
        except ValueError:
            return UnknownTool(requested=requested)
        adapter = self._adapters.get(name)
        if adapter is None:
            return UnknownTool(requested=requested)
        return KnownTool(name=name, adapter=adapter)

    def list(self) -> list[ToolName]:
        return sorted(self._adapters, key=lambda name: name.value)

    def items(self) -> Iterator[Tuple[ToolName, ToolAdapter]]:
        for name in self.list():
            yield name, self._adapters[name]

    async def aclose(self) -> None:
        for adapter in self._adapters.values():
            await adapter.aclose()


def build_tool_registry(settings: Settings, *, client: httpx.AsyncClient | None = None) -> ToolRegistry:
    return ToolRegistry(
        [
            TavilySearchAdapter.from_settings(settings, client=client),
            BrowseAIScrapeAdapter.from_settings(settings, client=client),
            ApifyScrapeAdapter.from_settings(settings, client=client),
        ]
    )
