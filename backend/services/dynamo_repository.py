"""DynamoDB implementations of the meeting, ledger and cancellation stores.

Every state change is a conditional write so overlapping sweeps and
concurrent callers cannot both win the same transition or ledger flag.
Tables are keyed by meeting id; due-meeting selection reads a GSI keyed on
``state`` with ``scheduled_time`` as the range key.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.exceptions import ClientError

from backend.config import get_settings
from backend.errors import InvalidState, LookupFailure
from backend.models.meeting_model import (
    CANCELLABLE_STATES,
    CancellationRecord,
    LedgerEntry,
    Meeting,
    MeetingState,
    ParticipantRole,
)
from backend.services.repository import to_record
from backend.utils.auth_aws import get_client
from backend.utils.time_utils import to_storage, utc_now

logger = logging.getLogger(__name__)

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


def _serialize(record: dict[str, Any]) -> dict[str, Any]:
    return {key: _serializer.serialize(value) for key, value in record.items() if value is not None}


def _deserialize(item: dict[str, Any]) -> dict[str, Any]:
    return {key: _deserializer.deserialize(value) for key, value in item.items()}


def _is_condition_failure(exc: ClientError) -> bool:
    code = exc.response.get("Error", {}).get("Code")
    return code in ("ConditionalCheckFailedException", "TransactionCanceledException")


def _query_all(client: Any, **kwargs: Any) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    while True:
        response = client.query(**kwargs)
        items.extend(_deserialize(item) for item in response.get("Items", []))
        last_key = response.get("LastEvaluatedKey")
        if not last_key:
            return items
        kwargs["ExclusiveStartKey"] = last_key


class DynamoMeetingRepository:
    def __init__(self, client: Any | None = None, table: str | None = None,
                 cancellations_table: str | None = None, state_index: str | None = None):
        settings = get_settings()
        self.client = client or get_client("dynamodb")
        self.table = table or settings.meetings_table
        self.cancellations_table = cancellations_table or settings.cancellations_table
        self.state_index = state_index or settings.meetings_state_index

    def create_meeting(self, meeting: Meeting) -> Meeting:
        self.client.put_item(
            TableName=self.table,
            Item=_serialize(to_record(meeting)),
            ConditionExpression="attribute_not_exists(id)",
        )
        return meeting

    def get_meeting(self, meeting_id: str) -> Meeting | None:
        response = self.client.get_item(TableName=self.table, Key={"id": {"S": meeting_id}}, ConsistentRead=True)
        item = response.get("Item")
        return Meeting(**_deserialize(item)) if item else None

    def _raise_for_failed_transition(self, meeting_id: str) -> None:
        current = self.get_meeting(meeting_id)
        if current is None:
            raise LookupFailure(f"Meeting {meeting_id} not found")
        raise InvalidState(f"Meeting {meeting_id} is {current.state.value}")

    @staticmethod
    def _state_condition(allowed: Iterable[MeetingState]) -> tuple[str, dict[str, Any]]:
        values = {f":allowed{idx}": {"S": state.value} for idx, state in enumerate(sorted(allowed, key=lambda s: s.value))}
        return f"attribute_exists(id) AND #state IN ({', '.join(values)})", values

    def transition(self, meeting_id: str, allowed: Iterable[MeetingState], new_state: MeetingState, **updates: Any) -> Meeting:
        condition, values = self._state_condition(allowed)
        names = {"#state": "state"}
        assignments = ["#state = :new_state", "updated_at = :updated_at"]
        values.update({":new_state": {"S": new_state.value}, ":updated_at": {"S": to_storage(utc_now())}})
        for idx, (field, value) in enumerate(updates.items()):
            names[f"#f{idx}"] = field
            values[f":v{idx}"] = _serializer.serialize(to_storage(value) if isinstance(value, datetime) else value)
            assignments.append(f"#f{idx} = :v{idx}")
        try:
            response = self.client.update_item(
                TableName=self.table,
                Key={"id": {"S": meeting_id}},
                UpdateExpression="SET " + ", ".join(assignments),
                ConditionExpression=condition,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ReturnValues="ALL_NEW",
            )
        except ClientError as exc:
            if not _is_condition_failure(exc):
                raise
            self._raise_for_failed_transition(meeting_id)
        return Meeting(**_deserialize(response["Attributes"]))

    def cancel_meeting(self, meeting_id: str, record: CancellationRecord) -> Meeting:
        condition, values = self._state_condition(CANCELLABLE_STATES)
        values.update({
            ":cancelled": {"S": MeetingState.CANCELLED.value},
            ":updated_at": {"S": to_storage(record.cancelled_at)},
        })
        try:
            self.client.transact_write_items(
                TransactItems=[
                    {
                        "Update": {
                            "TableName": self.table,
                            "Key": {"id": {"S": meeting_id}},
                            "UpdateExpression": "SET #state = :cancelled, updated_at = :updated_at",
                            "ConditionExpression": condition,
                            "ExpressionAttributeNames": {"#state": "state"},
                            "ExpressionAttributeValues": values,
                        }
                    },
                    {
                        "Put": {
                            "TableName": self.cancellations_table,
                            "Item": _serialize(to_record(record)),
                            "ConditionExpression": "attribute_not_exists(meeting_id)",
                        }
                    },
                ]
            )
        except ClientError as exc:
            if not _is_condition_failure(exc):
                raise
            self._raise_for_failed_transition(meeting_id)
        meeting = self.get_meeting(meeting_id)
        if meeting is None:
            raise LookupFailure(f"Meeting {meeting_id} not found")
        return meeting

    def list_due_meetings(self, window_start: datetime, window_end: datetime) -> list[Meeting]:
        items = _query_all(
            self.client,
            TableName=self.table,
            IndexName=self.state_index,
            KeyConditionExpression="#state = :state AND scheduled_time BETWEEN :start AND :end",
            ExpressionAttributeNames={"#state": "state"},
            ExpressionAttributeValues={
                ":state": {"S": MeetingState.ACCEPTED.value},
                ":start": {"S": to_storage(window_start)},
                ":end": {"S": to_storage(window_end)},
            },
        )
        return [Meeting(**item) for item in items]

    def list_overdue_meetings(self, cutoff: datetime) -> list[Meeting]:
        items = _query_all(
            self.client,
            TableName=self.table,
            IndexName=self.state_index,
            KeyConditionExpression="#state = :state AND scheduled_time < :cutoff",
            ExpressionAttributeNames={"#state": "state"},
            ExpressionAttributeValues={
                ":state": {"S": MeetingState.ACCEPTED.value},
                ":cutoff": {"S": to_storage(cutoff)},
            },
        )
        return [Meeting(**item) for item in items]


class DynamoNotificationLedger:
    def __init__(self, client: Any | None = None, table: str | None = None):
        self.client = client or get_client("dynamodb")
        self.table = table or get_settings().ledger_table

    def get_status(self, meeting_id: str) -> LedgerEntry | None:
        response = self.client.get_item(TableName=self.table, Key={"meeting_id": {"S": meeting_id}}, ConsistentRead=True)
        item = response.get("Item")
        return LedgerEntry(**_deserialize(item)) if item else None

    def _conditional_update(self, meeting_id: str, **kwargs: Any) -> bool:
        try:
            self.client.update_item(TableName=self.table, Key={"meeting_id": {"S": meeting_id}}, **kwargs)
        except ClientError as exc:
            if not _is_condition_failure(exc):
                raise
            return False
        return True

    def acquire_lease(self, meeting_id: str, role: ParticipantRole, now: datetime, until: datetime) -> bool:
        return self._conditional_update(
            meeting_id,
            UpdateExpression="SET #lease = :until",
            ConditionExpression=(
                "(attribute_not_exists(#flag) OR #flag = :false) "
                "AND (attribute_not_exists(#lease) OR #lease <= :now)"
            ),
            ExpressionAttributeNames={"#flag": f"{role.value}_notified", "#lease": f"{role.value}_lease_until"},
            ExpressionAttributeValues={
                ":until": {"S": to_storage(until)},
                ":now": {"S": to_storage(now)},
                ":false": {"BOOL": False},
            },
        )

    def release_lease(self, meeting_id: str, role: ParticipantRole) -> None:
        self.client.update_item(
            TableName=self.table,
            Key={"meeting_id": {"S": meeting_id}},
            UpdateExpression="REMOVE #lease",
            ExpressionAttributeNames={"#lease": f"{role.value}_lease_until"},
        )

    def mark_notified(self, meeting_id: str, role: ParticipantRole, now: datetime | None = None) -> bool:
        return self._conditional_update(
            meeting_id,
            UpdateExpression="SET #flag = :true, notification_sent_at = if_not_exists(notification_sent_at, :now) REMOVE #lease",
            ConditionExpression="attribute_not_exists(#flag) OR #flag = :false",
            ExpressionAttributeNames={"#flag": f"{role.value}_notified", "#lease": f"{role.value}_lease_until"},
            ExpressionAttributeValues={
                ":true": {"BOOL": True},
                ":false": {"BOOL": False},
                ":now": {"S": to_storage(now or utc_now())},
            },
        )


class DynamoCancellationRepository:
    def __init__(self, client: Any | None = None, table: str | None = None, counterpart_index: str | None = None):
        settings = get_settings()
        self.client = client or get_client("dynamodb")
        self.table = table or settings.cancellations_table
        self.counterpart_index = counterpart_index or settings.cancellations_counterpart_index

    def get_cancellation(self, meeting_id: str) -> CancellationRecord | None:
        response = self.client.get_item(TableName=self.table, Key={"meeting_id": {"S": meeting_id}}, ConsistentRead=True)
        item = response.get("Item")
        return CancellationRecord(**_deserialize(item)) if item else None

    def acknowledge(self, meeting_id: str, acknowledged_at: datetime) -> CancellationRecord:
        try:
            response = self.client.update_item(
                TableName=self.table,
                Key={"meeting_id": {"S": meeting_id}},
                UpdateExpression="SET acknowledged_by_counterpart = :true, acknowledged_at = :at",
                ConditionExpression="attribute_exists(meeting_id) AND acknowledged_by_counterpart = :false",
                ExpressionAttributeValues={
                    ":true": {"BOOL": True},
                    ":false": {"BOOL": False},
                    ":at": {"S": to_storage(acknowledged_at)},
                },
                ReturnValues="ALL_NEW",
            )
        except ClientError as exc:
            if not _is_condition_failure(exc):
                raise
            record = self.get_cancellation(meeting_id)
            if record is None:
                raise InvalidState(f"Meeting {meeting_id} has no cancellation") from exc
            return record
        return CancellationRecord(**_deserialize(response["Attributes"]))

    def list_unacknowledged(self, user_id: str) -> list[CancellationRecord]:
        items = _query_all(
            self.client,
            TableName=self.table,
            IndexName=self.counterpart_index,
            KeyConditionExpression="counterpart_id = :user",
            FilterExpression="acknowledged_by_counterpart = :false",
            ExpressionAttributeValues={":user": {"S": user_id}, ":false": {"BOOL": False}},
        )
        return [CancellationRecord(**item) for item in items]
