class DispatchError(Exception):
    """Base class for dispatch lifecycle failures."""

    code = "dispatch_error"
    retryable = False


class RecordNotFound(DispatchError, ValueError):
    code = "not_found"

    def __init__(self, record_id: str):
        super().__init__(f"Emergency {record_id} not found")
        self.record_id = record_id


class TransitionRejected(DispatchError):
    code = "rejected"

    def __init__(self, current: str, event: str, role: str):
        super().__init__(f"Event '{event}' by {role} is not valid from status '{current}'")
        self.current = current
        self.event = event
        self.role = role


class StaleStatus(DispatchError):
    """The record moved on before a compare-and-swap write landed."""

    code = "stale_status"
    retryable = True

    def __init__(self, record_id: str, expected: str, actual: str):
        super().__init__(
            f"Emergency {record_id} is '{actual}', expected '{expected}'"
        )
        self.record_id = record_id
        self.expected = expected
        self.actual = actual


class TerminalRecord(DispatchError):
    code = "terminal"

    def __init__(self, record_id: str, status: str):
        super().__init__(f"Emergency {record_id} is closed ({status})")
        self.record_id = record_id
        self.status = status


class AssignmentConflict(DispatchError):
    code = "assignment_conflict"

    def __init__(self, record_id: str, field: str, current: str):
        super().__init__(f"Emergency {record_id} already has {field}={current}")
        self.record_id = record_id
        self.field = field
        self.current = current


class StoreError(DispatchError):
    """The record store could not complete a read or write."""

    code = "store_error"
    retryable = True


class NotPermitted(DispatchError):
    """The actor may not perform this operation on the record right now."""

    code = "not_permitted"

    def __init__(self, message: str, reason: str = "not_permitted"):
        super().__init__(message)
        self.code = reason
