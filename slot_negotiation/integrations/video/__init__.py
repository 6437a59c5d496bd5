"""Video-conference room provisioning (Zoom, Microsoft Teams)."""

from .base import (
    CreateMeetingParams,
    Participant,
    VideoConferenceProvider,
    VideoMeetingResult,
    VideoProviderError,
)
from .registry import VideoConferenceRegistry, build_registry, get_video_registry
from .teams import TeamsProvider
from .zoom import ZoomProvider

__all__ = [
    "CreateMeetingParams",
    "Participant",
    "VideoConferenceProvider",
    "VideoMeetingResult",
    "VideoProviderError",
    "VideoConferenceRegistry",
    "build_registry",
    "get_video_registry",
    "TeamsProvider",
    "ZoomProvider",
]
