"""Source adapters for the chat platforms convoport can export from."""

from convoport.config import Config
from convoport.sources.base import AdapterRegistry, ListingCache, SourceAdapter
from convoport.sources.channel import ChannelRequest, ChannelResponse, DispatchTable, RequestChannel
from convoport.sources.gemini import GeminiAdapter
from convoport.sources.grok import GrokAdapter
from convoport.sources.local_export import LocalExportAdapter

__all__ = [
    "AdapterRegistry",
    "ChannelRequest",
    "ChannelResponse",
    "DispatchTable",
    "GeminiAdapter",
    "GrokAdapter",
    "ListingCache",
    "LocalExportAdapter",
    "RequestChannel",
    "SourceAdapter",
    "build_registry",
]


def build_registry(config: Config) -> AdapterRegistry:
    """Register an adapter for every enabled source in the configuration."""
    registry = AdapterRegistry()

    for name, source in config.sources.items():
        if not source.enabled:
            continue
        if name == GrokAdapter.platform:
            registry.register(GrokAdapter(base_url=source.base_url or "https://grok.com", cookies=source.cookies))
        elif name == GeminiAdapter.platform:
            registry.register(
                GeminiAdapter(base_url=source.base_url or "https://gemini.google.com", cookies=source.cookies)
            )
        elif name == LocalExportAdapter.platform and source.export_dir is not None:
            registry.register(LocalExportAdapter(source.export_dir))

    return registry
