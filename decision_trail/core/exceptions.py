"""
Engine-wide exception hierarchy.

Every service in the decision engine raises one of these types. Blueprints
register handlers against them once (see ``decision_trail.utils.errors``) and get
consistent HTTP status codes everywhere.

Usage:
    from decision_trail.core.exceptions import NotFoundError, InvalidArgumentError

    raise NotFoundError(resource="Decision", resource_id=decision_id)
    raise InvalidArgumentError("title is required", details={"title": "empty"})

Retry semantics:
    ConflictError and StorageUnavailableError mean nothing was committed.
    Callers retry the whole operation, not just the failing write.
"""


class NotFoundError(Exception):
    """Raised when a decision, version or share link does not exist.

    Also raised when a version exists but belongs to a different decision
    than the one named by the caller, so id confusion reads as "missing".

    Args:
        resource: Human-readable entity name (e.g. "Decision", "DecisionVersion").
        resource_id: The id that was looked up.
    """

    def __init__(self, resource: str, resource_id: str | int | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class InvalidArgumentError(Exception):
    """Raised when input is malformed or violates a field rule.

    Examples: diffing a version against itself, a zero version number,
    an empty title, an unknown access scope.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidStateTransitionError(Exception):
    """Raised when a status change is not permitted by the decision state machine,
    or when a mutation is attempted on an archived decision."""

    def __init__(self, current: str, attempted: str, reason: str | None = None) -> None:
        msg = f"Cannot '{attempted}' decision in status '{current}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.current_status = current
        self.attempted = attempted


class ConflictError(Exception):
    """Raised when an optimistic concurrency check or unique constraint fails.

    Covers version-number allocation races and share-link reissue races.

    Args:
        resource: Model name.
        field: The unique field (or field tuple) that collided.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} conflict on {field}"
        if value is not None:
            msg += f"={value!r}"
        super().__init__(msg)


class StorageUnavailableError(Exception):
    """Raised when durable storage fails (connection loss, lock/statement timeout)."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Storage unavailable during {operation}")


class ImmutableRecordError(RuntimeError):
    """Raised by ORM guards when code tries to update a version or audit entry."""


class ScopeDeniedError(Exception):
    """Raised when a share-link token lacks the access scope an action needs.

    Maps to HTTP 403.  Unknown, expired or revoked tokens raise NotFoundError
    instead, so a 403 only ever confirms a live token with a narrower scope.
    """

    def __init__(self, scope: str, required: str) -> None:
        self.scope = scope
        self.required = required
        super().__init__(f"Share link scope '{scope}' does not allow '{required}'")
