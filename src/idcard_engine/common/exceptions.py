"""IDCard-Engine exception hierarchy."""


class IdCardError(Exception):
    """Base exception for all IDCard-Engine errors."""

    def __init__(self, message: str = "", code: str = "IDCARD_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class ValidationError(IdCardError):
    """A mandatory input is missing or blank."""

    def __init__(self, message: str = "Invalid input"):
        super().__init__(message, code="VALIDATION")


class PreconditionError(IdCardError):
    """The target entity is not in a state that allows the transition."""

    def __init__(self, message: str = "Precondition failed", code: str = "PRECONDITION"):
        super().__init__(message, code=code)


class NotFoundError(PreconditionError):
    """The target entity does not exist."""

    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="NOT_FOUND")


class AuthorizationError(IdCardError):
    """The actor may not perform this action, or the target is protected."""

    def __init__(self, message: str = "Not authorized"):
        super().__init__(message, code="FORBIDDEN")


class ConflictError(IdCardError):
    """An optimistic update lost the race against a concurrent writer."""

    def __init__(self, message: str = "Concurrent modification detected"):
        super().__init__(message, code="CONFLICT")


class ExternalDependencyError(IdCardError):
    """Storage or gateway call failed or timed out."""

    def __init__(self, message: str = "External dependency failed"):
        super().__init__(message, code="EXTERNAL_DEPENDENCY")


HTTP_STATUS_BY_CODE: dict[str, int] = {
    "VALIDATION": 422,
    "PRECONDITION": 409,
    "NOT_FOUND": 404,
    "FORBIDDEN": 403,
    "CONFLICT": 409,
    "EXTERNAL_DEPENDENCY": 502,
}
