from __future__ import annotations

from datetime import timedelta
from urllib.parse import urlencode

import jwt

from backend.config import get_settings
from backend.models.meeting_model import Meeting
from backend.utils.join_token import JOIN_TOKEN_ISSUER
from backend.utils.time_utils import ensure_aware, utc_now


class RoomClient:
    """Assigns the video room link handed out when a meeting is accepted."""

    def __init__(self, base_url: str | None = None, secret: str | None = None):
        self.settings = get_settings()
        self.base_url = (base_url or self.settings.meeting_base_url).rstrip("/")
        self.secret = secret if secret is not None else self.settings.meeting_link_secret

    def generate_token(self, meeting: Meeting) -> str:
        expires_at = ensure_aware(meeting.scheduled_time) + timedelta(hours=self.settings.meeting_link_ttl_hours)
        payload = {
            "iss": JOIN_TOKEN_ISSUER,
            "sub": meeting.id,
            "iat": int(utc_now().timestamp()),
            "exp": int(expires_at.timestamp()),
            "participants": [meeting.initiator_id, meeting.counterpart_id],
        }
        return jwt.encode(payload, self.secret, algorithm="HS256")

    def create_room(self, meeting: Meeting) -> str:
        link = f"{self.base_url}/meeting/{meeting.id}"
        if not self.secret:
            return link
        return f"{link}?{urlencode({'token': self.generate_token(meeting)})}"
