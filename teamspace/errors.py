"""Domain errors. Every error names the team/member/task it concerns and the violated invariant."""


class TeamspaceError(Exception):
    """Base exception for teamspace domain errors."""

    invariant = ""

    def __init__(
        self,
        message: str,
        *,
        team: str | None = None,
        member: str | None = None,
        task_id: str | None = None,
        invariant: str | None = None,
    ):
        super().__init__(message)
        self.team = team
        self.member = member
        self.task_id = task_id
        if invariant is not None:
            self.invariant = invariant

    def context(self) -> dict:
        ctx = {"error": type(self).__name__, "message": str(self), "invariant": self.invariant}
        for key in ("team", "member", "task_id"):
            value = getattr(self, key)
            if value is not None:
                ctx[key] = value
        return ctx


class NameInvalid(TeamspaceError, ValueError):
    """Raised when a team or member name fails the kebab-case/length policy."""

    invariant = "names are kebab-case and length-bounded"


class AlreadyExists(TeamspaceError, ValueError):
    """Raised when creating something whose identifier is taken."""

    invariant = "team names are unique per workspace"


class DuplicateMemberName(AlreadyExists):
    invariant = "member names are unique within a team"


class NotFound(TeamspaceError, LookupError):
    """Raised when a referenced record does not exist."""


class TeamNotFound(NotFound):
    invariant = "team must exist"


class MemberNotFound(NotFound):
    invariant = "member must belong to team"


class TaskNotFound(NotFound):
    invariant = "task must exist in team graph"


class ShutdownRequestNotFound(NotFound):
    invariant = "shutdown request must exist"


class ActiveMembersExist(TeamspaceError):
    """Raised when deleting a team that still has active members."""

    invariant = "teams are deleted only when no member is active"

    def __init__(self, message: str, *, team: str, active: list[str]):
        super().__init__(message, team=team)
        self.active = active


class MissingBackendRef(TeamspaceError, ValueError):
    """Raised when a member would be active without a process to point at."""

    invariant = "an active member has a backend reference"


class WouldCreateCycle(TeamspaceError, ValueError):
    """Raised when a blocking edge would close a directed cycle."""

    invariant = "task graph is acyclic"

    def __init__(self, message: str, *, team: str, blocker_id: str, blocked_id: str):
        super().__init__(message, team=team, task_id=blocker_id)
        self.blocker_id = blocker_id
        self.blocked_id = blocked_id


class InvalidTransition(TeamspaceError, ValueError):
    """Raised when a task or member state change is not allowed."""

    invariant = "state changes follow the lifecycle"

    def __init__(self, message: str, *, current: str, target: str, **ctx):
        super().__init__(message, **ctx)
        self.current = current
        self.target = target


class SpawnFailed(TeamspaceError):
    """Raised when a member backend never confirmed liveness. The registry entry is rolled back."""

    invariant = "no member record survives a failed spawn"


class ShutdownTimeout(TeamspaceError):
    """Raised when the shutdown protocol gave up after its retry budget."""

    invariant = "shutdown never hangs without a caller-visible signal"

    def __init__(self, message: str, *, team: str, members: list[str], member: str | None = None):
        super().__init__(message, team=team, member=member)
        self.members = members


class RecipientInactive(TeamspaceError):
    """Raised when messaging a member that has been deactivated."""

    invariant = "messages go only to active members"


class BackendUnavailable(TeamspaceError):
    """Transient process/pane manager failure. Safe to retry."""

    invariant = "process manager reachable"
