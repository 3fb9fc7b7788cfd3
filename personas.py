# personas.py
from __future__ import annotations

from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from errors import SchemaError, describe_validation_error

PersonaId = Literal[
    "double_booked_family",
    "early_checkin_business",
    "broken_ac_elderly",
]


class Persona(BaseModel):
    """
    The guest the trainee talks to. Generated (or picked from the seeds)
    once per session and held fixed afterwards.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        frozen=True,
        str_strip_whitespace=True,
    )

    name: str = Field(min_length=1)
    demographics: str = ""
    personality_traits: List[str] = Field(default_factory=list)
    communication_style: str = Field(min_length=1)
    emotional_tone: str = Field(min_length=1)   # starting mood
    expectations: List[str] = Field(default_factory=list)
    escalation_behavior: List[str] = Field(default_factory=list)
    hidden_agenda: Optional[str] = None

    @field_validator("personality_traits", "expectations", "escalation_behavior")
    @classmethod
    def _drop_blank_items(cls, value: List[str]) -> List[str]:
        return [item.strip() for item in value if item and item.strip()]


def parse_persona(payload: Any) -> Persona:
    """
    Validate a loosely-typed persona payload (camelCase or snake_case keys).
    """
    if isinstance(payload, Persona):
        return payload
    if not isinstance(payload, Mapping):
        raise SchemaError("persona must be an object")
    try:
        return Persona.model_validate(dict(payload))
    except ValidationError as exc:
        raise SchemaError(f"Invalid persona: {describe_validation_error(exc)}") from exc


def persona_description(persona: Persona) -> str:
    """
    Natural language description of the guest persona.
    Used in system prompts for the LLM-driven 'guest'.
    """
    lines = [f"You are {persona.name}."]
    if persona.demographics:
        lines.append(f"Background: {persona.demographics}")
    if persona.personality_traits:
        lines.append("Personality: " + ", ".join(persona.personality_traits) + ".")
    lines.append(f"Communication style: {persona.communication_style}")
    lines.append(f"Current mood: {persona.emotional_tone}")
    if persona.expectations:
        lines.append("What you want: " + "; ".join(persona.expectations) + ".")
    if persona.escalation_behavior:
        lines.append(
            "If things go badly you: " + "; then ".join(persona.escalation_behavior) + "."
        )
    if persona.hidden_agenda:
        lines.append(
            f"Hidden agenda (never state it outright, let it shape your replies): {persona.hidden_agenda}"
        )
    return "\n".join(lines)


# ---- Seed personas for the 3 seed scenarios ----

PERSONAS: Dict[PersonaId, Dict[str, Any]] = {
    "double_booked_family": {
        "name": "Maria Alvarez",
        "demographics": "41-year-old mother travelling with her husband and two young kids after a long flight.",
        "personality_traits": ["protective of her family", "direct", "tired"],
        "communication_style": "Short, emphatic messages; uses capitals when upset.",
        "emotional_tone": "Angry and anxious",
        "expectations": [
            "A place to sleep tonight",
            "A clear plan within minutes",
            "Compensation for the disruption",
        ],
        "escalation_behavior": [
            "Demands to speak to a manager",
            "Threatens a chargeback and a one-star review",
        ],
        "hidden_agenda": "Would accept a nicer nearby unit instead of a refund.",
    },
    "early_checkin_business": {
        "name": "Daniel Okafor",
        "demographics": "34-year-old consultant in town for a client workshop.",
        "personality_traits": ["polite but assertive", "values punctuality"],
        "communication_style": "Concise and professional, expects quick answers.",
        "emotional_tone": "Stressed",
        "expectations": [
            "Early access to the unit or a place to store luggage",
            "Fast, precise communication",
        ],
        "escalation_behavior": [
            "Complains politely",
            "Becomes curt after vague answers",
            "Mentions cancelling future bookings",
        ],
    },
    "broken_ac_elderly": {
        "name": "Ruth Lindqvist",
        "demographics": "72-year-old retiree on a summer holiday, not comfortable with apps.",
        "personality_traits": ["patient", "easily confused by jargon", "worried about her health"],
        "communication_style": "Long, rambling messages; asks the same question twice when unsure.",
        "emotional_tone": "Confused and uncomfortable",
        "expectations": [
            "Someone to fix the air conditioning today",
            "Simple step-by-step instructions",
        ],
        "escalation_behavior": [
            "Asks for a phone call instead of chat",
            "Says her son will call to complain",
        ],
    },
}


def load_seed_persona(persona_id: str) -> Persona:
    if persona_id not in PERSONAS:
        raise SchemaError(f"Unknown persona id: {persona_id}")
    return parse_persona(PERSONAS[persona_id])  # type: ignore[index]
