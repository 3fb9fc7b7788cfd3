# scenarios.py
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from config import DEFAULT_MAX_TRAINEE_TURNS, DEFAULT_SUCCESS_PHRASES
from errors import SchemaError, describe_validation_error
from personas import PersonaId, load_seed_persona

Difficulty = Literal["easy", "medium", "hard"]

_SCHEMA_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    extra="forbid",
    frozen=True,
    str_strip_whitespace=True,
)


class CompletionPolicy(BaseModel):
    """
    When a session built on this scenario is considered finished.
    """

    model_config = _SCHEMA_CONFIG

    max_trainee_turns: int = Field(default_factory=lambda: DEFAULT_MAX_TRAINEE_TURNS, ge=1)
    success_phrases: List[str] = Field(default_factory=lambda: list(DEFAULT_SUCCESS_PHRASES))
    guest_end_phrases: List[str] = Field(default_factory=list)
    end_on_resolution: bool = True

    @field_validator("success_phrases", "guest_end_phrases")
    @classmethod
    def _drop_blank_phrases(cls, value: List[str]) -> List[str]:
        return [p.strip() for p in value if p and p.strip()]


class Scenario(BaseModel):
    model_config = _SCHEMA_CONFIG

    scenario_title: str = Field(min_length=1)
    business_context: str = ""
    guest_situation: str = Field(min_length=1)
    constraints_and_policies: List[str] = Field(default_factory=list)
    expected_challenges: List[str] = Field(default_factory=list)
    difficulty_level: Difficulty = "medium"
    success_criteria: List[str] = Field(default_factory=list)
    opening_line: Optional[str] = None
    completion: CompletionPolicy = Field(default_factory=CompletionPolicy)

    @field_validator("difficulty_level", mode="before")
    @classmethod
    def _normalise_difficulty(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value


def parse_scenario(payload: Any) -> Scenario:
    """
    Validate a loosely-typed scenario payload (camelCase or snake_case keys).
    """
    if isinstance(payload, Scenario):
        return payload
    if not isinstance(payload, Mapping):
        raise SchemaError("scenario must be an object")
    try:
        return Scenario.model_validate(dict(payload))
    except ValidationError as exc:
        raise SchemaError(f"Invalid scenario: {describe_validation_error(exc)}") from exc


# ---- Seed scenarios for 3 guest personas ----

SCENARIOS: Dict[str, Dict[str, Any]] = {
    "double_booking": {
        "persona_id": "double_booked_family",
        "scenario": {
            "scenario_title": "Double Booking on Arrival",
            "business_context": (
                "A calendar sync error between two listing channels let two families "
                "book the same apartment for the same night."
            ),
            "guest_situation": (
                "The guest has just arrived with their family and found another "
                "family already checked in."
            ),
            "constraints_and_policies": [
                "Refunds must be approved by a manager.",
                "Offer alternative accommodation of equal or better standard if available.",
                "Never share the other guest's details.",
            ],
            "expected_challenges": [
                "De-escalating an angry parent",
                "Finding alternative accommodation quickly",
                "Escalating the refund request correctly",
            ],
            "difficulty_level": "hard",
            "success_criteria": [
                "Acknowledges the problem empathetically in the first reply",
                "Offers concrete accommodation options",
                "Routes compensation through a manager",
            ],
            "opening_line": (
                "We just got to the apartment and there is ANOTHER family inside. "
                "My kids are exhausted. What is going on?"
            ),
            "completion": {
                "max_trainee_turns": 8,
                "success_phrases": ["booked you into", "manager has approved"],
                "guest_end_phrases": ["i'm leaving a review", "forget it"],
            },
        },
    },
    "early_checkin": {
        "persona_id": "early_checkin_business",
        "scenario": {
            "scenario_title": "Early Check-in Request",
            "business_context": (
                "Check-in is at 3 pm; cleaners finish around 1 pm on busy days. "
                "Luggage drop is possible at the partner cafe downstairs."
            ),
            "guest_situation": (
                "A business guest lands at 9 am and asks to check in early before "
                "a workshop at 11 am."
            ),
            "constraints_and_policies": [
                "Early check-in can only be confirmed once cleaning is finished.",
                "Early check-in before noon carries a fee.",
            ],
            "expected_challenges": [
                "Setting expectations without over-promising",
                "Offering a useful alternative",
            ],
            "difficulty_level": "easy",
            "success_criteria": [
                "Explains the cleaning constraint clearly",
                "Offers luggage storage or a timed alternative",
            ],
            "opening_line": (
                "Hi, I land at 9 and have a workshop at 11. Can I get into the flat early?"
            ),
            "completion": {
                "max_trainee_turns": 5,
                "success_phrases": ["luggage drop", "cafe downstairs"],
            },
        },
    },
    "broken_ac": {
        "persona_id": "broken_ac_elderly",
        "scenario": {
            "scenario_title": "Air Conditioning Failure in a Heatwave",
            "business_context": (
                "Temperatures are above 35°C. The maintenance vendor has a same-day "
                "slot but needs access confirmed by the guest."
            ),
            "guest_situation": (
                "An elderly guest reports that the air conditioning stopped working "
                "and the apartment is getting very hot."
            ),
            "constraints_and_policies": [
                "Vendor visits must be confirmed with the guest before dispatch.",
                "Portable fans can be delivered within two hours.",
            ],
            "expected_challenges": [
                "Avoiding technical jargon",
                "Checking on the guest's wellbeing",
                "Coordinating the vendor visit",
            ],
            "difficulty_level": "medium",
            "success_criteria": [
                "Checks the guest is safe",
                "Gives simple troubleshooting steps",
                "Confirms a repair time",
            ],
            "opening_line": (
                "Hello dear, the cold air machine has stopped and it is so hot in here. "
                "I pressed the buttons but nothing happens. What should I do?"
            ),
            "completion": {
                "max_trainee_turns": 6,
                "success_phrases": ["technician will arrive"],
            },
        },
    },
}


def load_seed_scenario(scenario_id: str) -> Scenario:
    if scenario_id not in SCENARIOS:
        raise SchemaError(f"Unknown scenario id: {scenario_id}")
    return parse_scenario(SCENARIOS[scenario_id]["scenario"])


def seed_persona_id(scenario_id: str) -> PersonaId:
    if scenario_id not in SCENARIOS:
        raise SchemaError(f"Unknown scenario id: {scenario_id}")
    return SCENARIOS[scenario_id]["persona_id"]


def init_session_state(scenario_id: str):
    """
    Build an initial SessionState for a seed scenario and its paired persona.
    The guest opens the conversation with the scenario's opening line.
    """
    from state import ConversationTurn, SessionState

    scenario = load_seed_scenario(scenario_id)
    persona = load_seed_persona(seed_persona_id(scenario_id))

    conversation = []
    if scenario.opening_line:
        conversation.append(
            ConversationTurn(
                speaker="guest",
                content=scenario.opening_line,
                speaker_name=persona.name,
            )
        )

    return SessionState(
        scenario=scenario,
        persona=persona,
        conversation=conversation,
        status="active",
    )
