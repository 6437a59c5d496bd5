"""Video-conference provider interface shared by Zoom and Teams."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone

from ...models import VideoProvider


class VideoProviderError(RuntimeError):
    """Provider rejected a request or could not be reached."""


@dataclass
class Participant:
    email: str
    name: str = ""


@dataclass
class CreateMeetingParams:
    title: str
    start_at: datetime
    end_at: datetime
    idempotency_key: str  # same key must never create a second room
    participants: list[Participant] = field(default_factory=list)
    description: str | None = None
    created_by_user_id: str | None = None

    @property
    def duration_minutes(self) -> int:
        return round((self.end_at - self.start_at).total_seconds() / 60)


@dataclass
class VideoMeetingResult:
    meeting_url: str
    external_meeting_id: str
    host_url: str | None = None
    dial_in: str | None = None


class VideoConferenceProvider(ABC):
    """A service that can book an online meeting room."""

    name: VideoProvider

    @abstractmethod
    def is_configured(self) -> bool:
        ...

    @abstractmethod
    async def create_meeting(self, params: CreateMeetingParams) -> VideoMeetingResult:
        ...

    @abstractmethod
    async def cancel_meeting(self, external_meeting_id: str) -> None:
        ...


def to_utc_iso(moment: datetime) -> str:
    """Render an instant as ``YYYY-MM-DDTHH:MM:SSZ``."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
