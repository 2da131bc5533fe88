from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from boto3.dynamodb.types import TypeDeserializer
from pydantic import ValidationError

from backend.config import get_settings
from backend.errors import LookupFailure
from backend.models.meeting_model import Participant
from backend.utils.auth_aws import get_client


class ParticipantDirectory:
    """Reads participant profiles from a JSON file keyed by user id."""

    def __init__(self, path: Path | None = None):
        self.path = path or Path(get_settings().data_dir) / "users.json"

    def get_participant(self, user_id: str) -> Participant:
        payload: dict[str, Any] = {}
        if self.path.exists():
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        item = payload.get(user_id)
        if not item:
            raise LookupFailure(f"Participant {user_id} not found")
        try:
            return Participant(user_id=user_id, **item)
        except ValidationError as exc:
            raise LookupFailure(f"Participant {user_id} has no usable profile") from exc


class DynamoParticipantDirectory:
    def __init__(self, client: Any | None = None, table: str | None = None):
        self.client = client or get_client("dynamodb")
        self.table = table or get_settings().users_table
        self._deserializer = TypeDeserializer()

    def get_participant(self, user_id: str) -> Participant:
        response = self.client.get_item(
            TableName=self.table,
            Key={"user_id": {"S": user_id}},
            ProjectionExpression="user_id, first_name, last_name, email",
        )
        item = response.get("Item")
        if not item:
            raise LookupFailure(f"Participant {user_id} not found")
        data = {key: self._deserializer.deserialize(value) for key, value in item.items()}
        try:
            return Participant(**data)
        except ValidationError as exc:
            raise LookupFailure(f"Participant {user_id} has no usable profile") from exc
