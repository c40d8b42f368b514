from dataclasses import dataclass, field
from enum import Enum


class MemberState(str, Enum):
    REQUESTED = "requested"
    SPAWNING = "spawning"
    ACTIVE = "active"
    SHUTDOWN_REQUESTED = "shutdown_requested"
    SHUTDOWN_APPROVED = "shutdown_approved"
    TERMINATED = "terminated"
    SPAWN_FAILED = "spawn_failed"


MEMBER_TRANSITIONS: dict[MemberState, frozenset[MemberState]] = {
    MemberState.REQUESTED: frozenset({MemberState.SPAWNING, MemberState.SPAWN_FAILED}),
    MemberState.SPAWNING: frozenset({MemberState.ACTIVE, MemberState.SPAWN_FAILED}),
    MemberState.ACTIVE: frozenset({MemberState.SHUTDOWN_REQUESTED, MemberState.TERMINATED}),
    MemberState.SHUTDOWN_REQUESTED: frozenset(
        {MemberState.ACTIVE, MemberState.SHUTDOWN_APPROVED, MemberState.TERMINATED}
    ),
    MemberState.SHUTDOWN_APPROVED: frozenset({MemberState.TERMINATED}),
    MemberState.TERMINATED: frozenset(),
    MemberState.SPAWN_FAILED: frozenset(),
}


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TASK_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.IN_PROGRESS}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}


class MessageKind(str, Enum):
    MESSAGE = "message"
    BROADCAST = "broadcast"
    SHUTDOWN_REQUEST = "shutdown_request"
    SHUTDOWN_RESPONSE = "shutdown_response"
    IDLE_NOTIFICATION = "idle_notification"
    PLAN_APPROVAL_REQUEST = "plan_approval_request"
    PLAN_APPROVAL_RESPONSE = "plan_approval_response"


class ShutdownStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


COLOR_PALETTE = ["blue", "green", "yellow", "purple", "orange", "pink", "cyan", "red"]


@dataclass
class TeamSettings:
    max_concurrent_tasks: int | None = None
    default_model: str | None = None
    timeout: float | None = None


@dataclass
class Member:
    team: str
    name: str
    agent_id: str = ""
    role: str | None = None
    model: str | None = None
    color: str | None = None
    backend_ref: str | None = None
    is_active: bool = False
    state: MemberState | str = MemberState.REQUESTED
    joined_at: str | None = None
    left_at: str | None = None

    def __post_init__(self):
        if not self.agent_id:
            self.agent_id = f"{self.name}@{self.team}"
        self.is_active = bool(self.is_active)
        self.state = MemberState(self.state)


@dataclass
class Team:
    name: str
    description: str = ""
    created_at: str | None = None
    lead_session_id: str | None = None
    settings: TeamSettings = field(default_factory=TeamSettings)
    members: list[Member] = field(default_factory=list)

    @property
    def active_members(self) -> list[Member]:
        return [m for m in self.members if m.is_active]


# Message payload variants. One per MessageKind.


@dataclass(frozen=True)
class PlainMessage:
    kind = MessageKind.MESSAGE


@dataclass(frozen=True)
class Broadcast:
    kind = MessageKind.BROADCAST


@dataclass(frozen=True)
class ShutdownRequest:
    request_id: str
    reason: str = ""
    kind = MessageKind.SHUTDOWN_REQUEST


@dataclass(frozen=True)
class ShutdownResponse:
    request_id: str
    approve: bool
    reason: str | None = None
    kind = MessageKind.SHUTDOWN_RESPONSE


@dataclass(frozen=True)
class IdleNotification:
    reason: str = "available"
    completed_task_id: str | None = None
    kind = MessageKind.IDLE_NOTIFICATION


@dataclass(frozen=True)
class PlanApprovalRequest:
    request_id: str
    plan: str
    kind = MessageKind.PLAN_APPROVAL_REQUEST


@dataclass(frozen=True)
class PlanApprovalResponse:
    request_id: str
    approve: bool
    feedback: str | None = None
    kind = MessageKind.PLAN_APPROVAL_RESPONSE


Payload = (
    PlainMessage
    | Broadcast
    | ShutdownRequest
    | ShutdownResponse
    | IdleNotification
    | PlanApprovalRequest
    | PlanApprovalResponse
)


@dataclass
class Message:
    """One inbox entry. Immutable once appended, except ``read``."""

    message_id: str
    team: str
    recipient: str
    sender: str
    text: str
    summary: str = ""
    payload: Payload = field(default_factory=PlainMessage)
    color: str | None = None
    created_at: str | None = None
    read: bool = False
    seq: int = 0

    @property
    def kind(self) -> MessageKind:
        return self.payload.kind


@dataclass
class ShutdownRecord:
    request_id: str
    team: str
    member: str
    reason: str = ""
    status: ShutdownStatus | str = ShutdownStatus.PENDING
    response_reason: str | None = None
    created_at: str | None = None
    resolved_at: str | None = None

    def __post_init__(self):
        self.status = ShutdownStatus(self.status)


@dataclass
class Task:
    task_id: str
    team: str
    subject: str
    status: TaskStatus | str = TaskStatus.PENDING
    description: str = ""
    owner: str | None = None
    priority: str | None = None
    tags: list[str] = field(default_factory=list)
    position: int = 0
    created_at: str | None = None
    updated_at: str | None = None
    archived_at: str | None = None
    blocks: list[str] = field(default_factory=list)
    blocked_by: list[str] = field(default_factory=list)


@dataclass
class Event:
    event_id: str
    source: str
    event_type: str
    timestamp: int
    team: str | None = None
    agent_id: str | None = None
    data: str | None = None
