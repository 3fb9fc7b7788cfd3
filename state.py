# state.py
from typing import Any, Dict, List, Literal, Mapping, Optional, TypedDict

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from errors import SchemaError, describe_validation_error
from personas import Persona
from scenarios import Scenario

Speaker = Literal["trainee", "guest"]
SessionStatus = Literal["active", "paused", "completed"]

_SCHEMA_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    extra="forbid",
    frozen=True,
)


class TurnRating(BaseModel):
    model_config = _SCHEMA_CONFIG

    rating: int = Field(ge=1, le=5)
    reason: str = ""
    suggestions: List[str] = Field(default_factory=list)


class ConversationTurn(BaseModel):
    """
    One utterance in the dialogue timeline. Turns are never edited once
    appended; with_rating() returns a rated copy right after creation.
    """

    model_config = _SCHEMA_CONFIG

    speaker: Speaker
    content: str
    speaker_name: Optional[str] = None          # guest role tag (persona name)
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    rating_reason: Optional[str] = None
    suggestions: List[str] = Field(default_factory=list)
    resolution_accepted: bool = False           # guest turns only

    @model_validator(mode="after")
    def _check_speaker_fields(self) -> "ConversationTurn":
        if not self.content or not self.content.strip():
            raise ValueError("turn content must not be blank")
        if self.speaker == "guest" and (
            self.rating is not None or self.rating_reason or self.suggestions
        ):
            raise ValueError("only trainee turns can carry a rating")
        if self.speaker == "trainee" and self.resolution_accepted:
            raise ValueError("only guest turns can accept a resolution")
        return self

    def with_rating(self, rating: TurnRating) -> "ConversationTurn":
        return self.model_copy(
            update={
                "rating": rating.rating,
                "rating_reason": rating.reason,
                "suggestions": list(rating.suggestions),
            }
        )


class Feedback(BaseModel):
    """
    Final structured report, attached once when the session completes.
    """

    model_config = _SCHEMA_CONFIG

    summary: Optional[str] = None
    average_rating: Optional[float] = None
    rated_turns: int = 0
    total_trainee_turns: int = 0
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    overall_assessment: str = "not rated"
    completion_reason: str = ""


class SessionState(BaseModel):
    """
    The aggregate passed through the workflow. Rebuilt from the caller's
    payload on every invocation; the workflow never holds on to it.
    """

    model_config = _SCHEMA_CONFIG

    scenario: Scenario
    persona: Persona
    conversation: List[ConversationTurn] = Field(default_factory=list)
    status: SessionStatus = "active"
    last_rating: Optional[int] = Field(default=None, ge=1, le=5)
    last_rating_reason: Optional[str] = None
    feedback: Optional[Feedback] = None

    @model_validator(mode="after")
    def _check_invariants(self) -> "SessionState":
        for prev, curr in zip(self.conversation, self.conversation[1:]):
            if prev.speaker == curr.speaker:
                raise ValueError(
                    f"turns must alternate between trainee and guest (two {curr.speaker} turns in a row)"
                )
        if self.feedback is not None and self.status != "completed":
            raise ValueError("feedback can only be attached to a completed session")
        return self

    @property
    def trainee_turns(self) -> List[ConversationTurn]:
        return [t for t in self.conversation if t.speaker == "trainee"]

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


def parse_turn(payload: Any) -> ConversationTurn:
    if isinstance(payload, ConversationTurn):
        return payload
    if not isinstance(payload, Mapping):
        raise SchemaError("conversation turn must be an object")
    try:
        return ConversationTurn.model_validate(dict(payload))
    except ValidationError as exc:
        raise SchemaError(f"Invalid conversation turn: {describe_validation_error(exc)}") from exc


def parse_session(payload: Any) -> SessionState:
    """
    Single validation stage for an inbound session payload.
    """
    if isinstance(payload, SessionState):
        return payload
    if not isinstance(payload, Mapping):
        raise SchemaError("session must be an object")
    try:
        return SessionState.model_validate(dict(payload))
    except ValidationError as exc:
        raise SchemaError(f"Invalid session: {describe_validation_error(exc)}") from exc


class WorkflowState(TypedDict, total=False):
    """
    Working state for one workflow invocation.

    This flows through the LangGraph pipeline and is discarded afterwards.
    """
    # Session
    scenario: Scenario
    persona: Persona
    conversation: List[ConversationTurn]
    status: SessionStatus
    last_rating: Optional[int]
    last_rating_reason: Optional[str]
    feedback: Optional[Feedback]

    # Invocation input
    trainee_message: Optional[str]
    force_end: bool

    # Bookkeeping
    new_trainee_turn: bool       # True when this invocation appended a trainee turn
    completion_reason: Optional[str]
    next: str                    # "guest" | "end"
