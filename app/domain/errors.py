from __future__ import annotations


class EngineError(Exception):
    code = "EngineError"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code

    @property
    def message(self) -> str:
        return str(self)


class ValidationError(EngineError):
    code = "ValidationError"


class NotFoundError(EngineError):
    code = "NotFound"


class ResourceExhausted(EngineError):
    code = "ResourceExhausted"


class ExpiredError(ResourceExhausted):
    code = "Expired"


class StateError(EngineError):
    """Illegal transition; ``code`` names the rule that was violated."""

    code = "StateError"


class ConflictError(EngineError):
    code = "Conflict"
