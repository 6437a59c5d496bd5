"""Lookup of video-conference providers by selector value."""

import logging
from functools import lru_cache

from ...core.config import Settings, get_settings
from ...models import VideoProvider
from .base import VideoConferenceProvider
from .teams import TeamsProvider
from .zoom import ZoomProvider

logger = logging.getLogger(__name__)


class VideoConferenceRegistry:
    def __init__(self):
        self._providers: dict[VideoProvider, VideoConferenceProvider] = {}

    def register(self, provider: VideoConferenceProvider) -> None:
        self._providers[VideoProvider(provider.name)] = provider

    def get(self, name: VideoProvider | str) -> VideoConferenceProvider | None:
        try:
            key = VideoProvider(name)
        except ValueError:
            return None
        return self._providers.get(key)

    def list_configured(self) -> list[VideoProvider]:
        return [name for name, p in self._providers.items() if p.is_configured()]


def build_registry(settings: Settings | None = None) -> VideoConferenceRegistry:
    """Zoom and Teams; Google Meet needs per-user calendar OAuth and is not registered."""
    settings = settings or get_settings()
    registry = VideoConferenceRegistry()
    registry.register(ZoomProvider(settings))
    registry.register(TeamsProvider(settings))
    logger.info(
        f"Video providers configured: "
        f"{[p.value for p in registry.list_configured()] or 'none'}"
    )
    return registry


@lru_cache
def get_video_registry() -> VideoConferenceRegistry:
    """Process-wide registry, so provider token caches are shared."""
    return build_registry()
