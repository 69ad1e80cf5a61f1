"""
Error taxonomy for the order pipeline. Each error carries the HTTP status the API maps it to.
"""


class OrderlineError(Exception):
    status_code = 500

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message()
        super().__init__(self.message)

    @classmethod
    def default_message(cls) -> str:
        return "Server error"


class ValidationFailed(OrderlineError):
    status_code = 400


class InvalidStatusError(ValidationFailed):
    @classmethod
    def default_message(cls) -> str:
        return "Invalid status"


class UnauthorizedError(OrderlineError):
    status_code = 401

    @classmethod
    def default_message(cls) -> str:
        return "Unauthorized"


class ForbiddenError(OrderlineError):
    status_code = 403

    @classmethod
    def default_message(cls) -> str:
        return "Forbidden"


class OrderNotFoundError(OrderlineError):
    status_code = 404

    @classmethod
    def default_message(cls) -> str:
        return "Not found"


class InvalidTransitionError(OrderlineError):
    """Raised when the order's current status does not allow the requested one."""
    status_code = 409

    def __init__(self, current_state: str | None = None, target: str | None = None):
        self.current_state = current_state
        self.target = target
        super().__init__(f"Cannot move order from {current_state} to {target}")


class VersionConflictError(OrderlineError):
    """Raised when the caller's expected version no longer matches the stored row."""
    status_code = 409

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Order was modified (expected version {expected}, found {actual})")


class DuplicateShortIdError(OrderlineError):
    """Raised by the store when a generated shortId already exists."""
