"""Microsoft Teams meeting provider (Graph API, client credentials)."""

import logging
from datetime import datetime, timedelta, timezone
from urllib.parse import quote

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


class TeamsProvider(VideoConferenceProvider):
    """
    Creates Teams online meetings on behalf of a fixed organizer account.

    Uses ``onlineMeetings/createOrGet`` keyed by the idempotency key, so a
    retried request returns the room created the first time.
    """

    name = VideoProvider.TEAMS

    LOGIN_URL = "https://login.microsoftonline.com"
    GRAPH_URL = "https://graph.microsoft.com/v1.0"

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
        return self._settings.teams_configured

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            timeout=self._settings.video_request_timeout_seconds,
        )

    def _organizer_url(self) -> str:
        organizer = quote(self._settings.ms_organizer_user_id or "", safe="")
        return f"{self.GRAPH_URL}/users/{organizer}/onlineMeetings"

    async def get_access_token(self) -> str:
        """Client-credentials token, cached until a minute before expiry."""
        now = datetime.now(timezone.utc)
        if self._access_token and self._token_expires:
            if now < self._token_expires - timedelta(minutes=1):
                return self._access_token

        if not self.is_configured():
            raise VideoProviderError("Teams is not configured")

        async with self._client() as client:
            response = await client.post(
                f"{self.LOGIN_URL}/{self._settings.ms_tenant_id}/oauth2/v2.0/token",
                data={
                    "grant_type": "client_credentials",
                    "client_id": self._settings.ms_client_id,
                    "client_secret": self._settings.ms_client_secret,
                    "scope": "https://graph.microsoft.com/.default",
                },
            )

        if response.status_code != 200:
            logger.error(f"Failed to get Graph token: {response.status_code} {response.text}")
            raise VideoProviderError(f"MS OAuth token request failed ({response.status_code})")

        data = response.json()
        self._access_token = data["access_token"]
        self._token_expires = now + timedelta(seconds=data.get("expires_in", 3600))
        return self._access_token

    async def create_meeting(self, params: CreateMeetingParams) -> VideoMeetingResult:
        token = await self.get_access_token()

        payload = {
            "externalId": params.idempotency_key,
            "subject": params.title,
            "startDateTime": to_utc_iso(params.start_at),
            "endDateTime": to_utc_iso(params.end_at),
            "participants": {
                "attendees": [
                    {
                        "upn": p.email,
                        "identity": {"user": {"displayName": p.name}},
                    }
                    for p in params.participants
                ],
            },
        }

        async with self._client() as client:
            response = await client.post(
                f"{self._organizer_url()}/createOrGet",
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
            )

        if response.status_code not in (200, 201):
            logger.error(f"Graph API error (Teams meeting): {response.status_code} {response.text}")
            raise VideoProviderError(f"Microsoft Graph API error ({response.status_code})")

        data = response.json()
        dial_in = (data.get("audioConferencing") or {}).get("tollNumber")
        return VideoMeetingResult(
            meeting_url=data["joinWebUrl"],
            external_meeting_id=data["id"],
            dial_in=dial_in,
        )

    async def cancel_meeting(self, external_meeting_id: str) -> None:
        token = await self.get_access_token()

        async with self._client() as client:
            response = await client.delete(
                f"{self._organizer_url()}/{quote(external_meeting_id, safe='')}",
                headers={"Authorization": f"Bearer {token}"},
            )

        if response.status_code not in (200, 204, 404):
            logger.error(
                f"Failed to cancel Teams meeting {external_meeting_id}: "
                f"{response.status_code} {response.text}"
            )
            raise VideoProviderError(f"Microsoft Graph API error ({response.status_code})")
