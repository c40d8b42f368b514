"""Message payload (de)serialization: tagged variant <-> (kind, json)."""

import json
from dataclasses import asdict

from teamspace.models import (
    Broadcast,
    IdleNotification,
    MessageKind,
    Payload,
    PlainMessage,
    PlanApprovalRequest,
    PlanApprovalResponse,
    ShutdownRequest,
    ShutdownResponse,
)

PAYLOAD_TYPES: dict[MessageKind, type] = {
    MessageKind.MESSAGE: PlainMessage,
    MessageKind.BROADCAST: Broadcast,
    MessageKind.SHUTDOWN_REQUEST: ShutdownRequest,
    MessageKind.SHUTDOWN_RESPONSE: ShutdownResponse,
    MessageKind.IDLE_NOTIFICATION: IdleNotification,
    MessageKind.PLAN_APPROVAL_REQUEST: PlanApprovalRequest,
    MessageKind.PLAN_APPROVAL_RESPONSE: PlanApprovalResponse,
}


def encode(payload: Payload) -> tuple[str, str | None]:
    if type(payload) is not PAYLOAD_TYPES.get(payload.kind):
        raise TypeError(f"Unknown payload type: {type(payload).__name__}")
    fields = asdict(payload)
    return payload.kind.value, json.dumps(fields) if fields else None


def decode(kind: str, raw: str | None) -> Payload:
    try:
        payload_type = PAYLOAD_TYPES[MessageKind(kind)]
    except ValueError as e:
        raise ValueError(f"Unknown message kind: {kind}") from e
    return payload_type(**json.loads(raw)) if raw else payload_type()
