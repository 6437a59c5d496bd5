"""Zoom meeting provider (Server-to-Server OAuth app)."""

import logging
from datetime import datetime, timedelta, timezone

import httpx

from ...core.config import Settings, get_settings
from ...models import VideoProvider
from .base import (
    CreateMeetingParams,
    VideoConferenceProvider,
    VideoMeetingResult,
    VideoProviderError,
    to_utc_iso,
)

logger = logging.getLogger(__name__)


class ZoomProvider(VideoConferenceProvider):
    """
    Creates scheduled Zoom meetings on the account of the S2S app.

    Zoom has no request-level idempotency; the caller guarantees a room is
    requested once per confirmed proposal.
    """

    name = VideoProvider.ZOOM

    OAUTH_URL = "https://zoom.us/oauth/token"
    API_URL = "https://api.zoom.us/v2"

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._settings = settings or get_settings()
        self._transport = transport
        self._access_token: str | None = None
        self._token_expires: datetime | None = None

    def is_configured(self) -> bool:
        return self._settings.zoom_configured

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            timeout=self._settings.video_request_timeout_seconds,
        )

    async def get_access_token(self) -> str:
        """Account-credentials token, cached until a minute before expiry."""
        now = datetime.now(timezone.utc)
        if self._access_token and self._token_expires:
            if now < self._token_expires - timedelta(minutes=1):
                return self._access_token

        if not self.is_configured():
            raise VideoProviderError("Zoom is not configured")

        async with self._client() as client:
            response = await client.post(
                self.OAUTH_URL,
                auth=(self._settings.zoom_client_id, self._settings.zoom_client_secret),
                data={
                    "grant_type": "account_credentials",
                    "account_id": self._settings.zoom_account_id,
                },
            )

        if response.status_code != 200:
            logger.error(f"Zoom OAuth token request failed: {response.status_code} {response.text}")
            raise VideoProviderError(f"Zoom OAuth token request failed ({response.status_code})")

        data = response.json()
        self._access_token = data["access_token"]
        self._token_expires = now + timedelta(seconds=data.get("expires_in", 3600))
        return self._access_token

    async def create_meeting(self, params: CreateMeetingParams) -> VideoMeetingResult:
        token = await self.get_access_token()

        payload = {
            "topic": params.title,
            "type": 2,  # scheduled meeting
            "start_time": to_utc_iso(params.start_at),
            "duration": params.duration_minutes,
            "timezone": self._settings.business_timezone,
            "agenda": params.description or "",
            "settings": {
                "join_before_host": True,
                "waiting_room": False,
                "auto_recording": "none",
                "meeting_invitees": [{"email": p.email} for p in params.participants],
            },
        }

        async with self._client() as client:
            response = await client.post(
                f"{self.API_URL}/users/me/meetings",
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
            )

        if response.status_code not in (200, 201):
            logger.error(f"Zoom meeting creation failed: {response.status_code} {response.text}")
            raise VideoProviderError(f"Zoom API error ({response.status_code})")

        data = response.json()
        return VideoMeetingResult(
            meeting_url=data["join_url"],
            external_meeting_id=str(data["id"]),
            host_url=data.get("start_url"),
            dial_in=data.get("pstn_password"),
        )

    async def cancel_meeting(self, external_meeting_id: str) -> None:
        token = await self.get_access_token()

        async with self._client() as client:
            response = await client.delete(
                f"{self.API_URL}/meetings/{external_meeting_id}",
                headers={"Authorization": f"Bearer {token}"},
            )

        # Already gone is fine
        if response.status_code not in (200, 204, 404):
            logger.error(
                f"Failed to cancel Zoom meeting {external_meeting_id}: "
                f"{response.status_code} {response.text}"
            )
            raise VideoProviderError(f"Zoom API error ({response.status_code})")
