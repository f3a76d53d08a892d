"""Tagged event variants delivered by the channel transport.

Raw change payloads (table name, event type, ``new``/``old`` row dicts) are
validated into one of these models at the transport boundary so listeners
never inspect untyped dicts.
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from .schemas import MessageRecord, NotificationRecord, TypingStatusRecord


ChangeType = Literal["INSERT", "UPDATE", "DELETE"]


class MessageInserted(BaseModel):
    kind: Literal["message.insert"] = "message.insert"
    record: MessageRecord


class TypingInserted(BaseModel):
    kind: Literal["typing.insert"] = "typing.insert"
    record: TypingStatusRecord


class TypingUpdated(BaseModel):
    kind: Literal["typing.update"] = "typing.update"
    record: TypingStatusRecord


class TypingDeleted(BaseModel):
    kind: Literal["typing.delete"] = "typing.delete"
    old: TypingStatusRecord


class NotificationInserted(BaseModel):
    kind: Literal["notification.insert"] = "notification.insert"
    record: NotificationRecord


class NotificationUpdated(BaseModel):
    kind: Literal["notification.update"] = "notification.update"
    record: NotificationRecord


ChangeEvent = Annotated[
    Union[
        MessageInserted,
        TypingInserted,
        TypingUpdated,
        TypingDeleted,
        NotificationInserted,
        NotificationUpdated,
    ],
    Field(discriminator="kind"),
]


class PresenceSync(BaseModel):
    kind: Literal["presence.sync"] = "presence.sync"
    state: Dict[str, List[Dict[str, Any]]] = {}


class PresenceJoin(BaseModel):
    kind: Literal["presence.join"] = "presence.join"
    key: str
    payload: Dict[str, Any] = {}


class PresenceLeave(BaseModel):
    kind: Literal["presence.leave"] = "presence.leave"
    key: str


PresenceEvent = Union[PresenceSync, PresenceJoin, PresenceLeave]


class Broadcast(BaseModel):
    kind: Literal["broadcast"] = "broadcast"
    event: str
    payload: Dict[str, Any] = {}


_KINDS: Dict[tuple, str] = {
    ("messages", "INSERT"): "message.insert",
    ("typing_status", "INSERT"): "typing.insert",
    ("typing_status", "UPDATE"): "typing.update",
    ("typing_status", "DELETE"): "typing.delete",
    ("notifications", "INSERT"): "notification.insert",
    ("notifications", "UPDATE"): "notification.update",
}

_change_adapter: TypeAdapter = TypeAdapter(ChangeEvent)


def parse_change(
    table: str,
    event_type: str,
    new: Optional[Dict[str, Any]] = None,
    old: Optional[Dict[str, Any]] = None,
):
    """
    Validate a raw row-change payload into its tagged variant.

    Raises:
        ValueError: unknown (table, event type) pair
        pydantic.ValidationError: row does not match the record schema
    """
    kind = _KINDS.get((table, event_type))
    if kind is None:
        raise ValueError(f"Unsupported change event: {table}/{event_type}")
    if event_type == "DELETE":
        return _change_adapter.validate_python({"kind": kind, "old": old or {}})
    return _change_adapter.validate_python({"kind": kind, "record": new or {}})


def event_type_of(event) -> ChangeType:
    """Map a change variant back to its row event type."""
    return event.kind.rsplit(".", 1)[1].upper()  # type: ignore[return-value]


def row_of(event) -> Dict[str, Any]:
    """Row the event refers to (``old`` for deletes, ``record`` otherwise)."""
    row = event.old if isinstance(event, TypingDeleted) else event.record
    return row.model_dump()
