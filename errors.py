# errors.py
from typing import Any, Optional


class TrainingError(Exception):
    """
    Base class for every error raised by the training workflow.
    """


class SchemaError(TrainingError, ValueError):
    """
    Malformed scenario / persona / turn / session input. The caller's fault.
    """


class InvalidTurnRole(TrainingError):
    """
    A component was handed a turn from the wrong speaker.
    """


class SessionNotActive(TrainingError):
    def __init__(self, status: str, action: str = "accept new turns"):
        self.status = status
        self.action = action
        super().__init__(f"Session is {status} and cannot {action}.")


class ModelUnavailable(TrainingError):
    """
    Transient upstream failure (timeout, rate limit, connection drop).
    Safe to retry the whole invocation from the same pre-call state.
    """

    partial_state: Optional[Any] = None


class ModelError(TrainingError):
    """
    Persistent or semantic upstream failure (bad request, unusable output).
    """

    partial_state: Optional[Any] = None


class AggregationError(TrainingError):
    """
    Feedback synthesis failed even though ratings were present.
    """


def describe_validation_error(exc: Any) -> str:
    """
    Compact one-line rendering of a pydantic ValidationError.
    """
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "<root>"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)
