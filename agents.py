# agents.py
from typing import Any, Dict, List, Optional
import json
import logging
import re

import openai
from langchain_core.messages import (
    HumanMessage,
    AIMessage,
    SystemMessage,
    BaseMessage,
)
from pydantic import BaseModel, Field, ValidationError

from config import HISTORY_WINDOW
from errors import InvalidTurnRole, ModelError, ModelUnavailable, SchemaError
from personas import Persona, parse_persona, persona_description
from scenarios import Scenario, parse_scenario
from state import ConversationTurn, SessionState, TurnRating

logger = logging.getLogger(__name__)

# Upstream conditions that are worth retrying from the same pre-call state
_TRANSIENT_ERRORS = (
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
    TimeoutError,
)


# ---------- Model call seam ----------

def invoke_model(llm: Any, messages: List[BaseMessage]) -> str:
    """
    Call a chat model and return its text, translating provider failures
    into ModelUnavailable (transient) or ModelError (persistent).
    """
    try:
        response = llm.invoke(messages)
    except _TRANSIENT_ERRORS as exc:
        raise ModelUnavailable(f"Model temporarily unavailable: {exc}") from exc
    except openai.APIError as exc:
        raise ModelError(f"Model call failed: {exc}") from exc

    content = response.content
    text = content if isinstance(content, str) else str(content)
    if not text.strip():
        raise ModelError("Model returned an empty response")
    return text


def parse_json_object(text: str) -> Dict[str, Any]:
    """
    Parse a JSON object out of model output, tolerating code fences or
    chatter around it.
    """
    try:
        data = json.loads(text)
    except ValueError:
        match = re.search(r"\{.*\}", text, re.DOTALL)
        if not match:
            raise ModelError("Model output did not contain a JSON object")
        try:
            data = json.loads(match.group(0))
        except ValueError as exc:
            raise ModelError("Model output contained malformed JSON") from exc

    if not isinstance(data, dict):
        raise ModelError("Model output was JSON but not an object")
    return data


def recent_turns(conversation: List[ConversationTurn], window: int) -> List[ConversationTurn]:
    if window <= 0:
        return []
    return list(conversation[-window:])


def _as_chat_messages(turns: List[ConversationTurn]) -> List[BaseMessage]:
    # The trainee is the human side of the chat, the guest is the model
    return [
        HumanMessage(content=t.content) if t.speaker == "trainee" else AIMessage(content=t.content)
        for t in turns
    ]


def _transcript(turns: List[ConversationTurn]) -> str:
    lines = []
    for t in turns:
        role = "TRAINEE" if t.speaker == "trainee" else "GUEST"
        lines.append(f"{role}: {t.content}")
    return "\n".join(lines)


def _bullets(items: List[str]) -> str:
    return "\n".join(f"- {item}" for item in items) or "- (none)"


# ---------- Guest (LLM persona) ----------

class GuestReply(BaseModel):
    message: str
    speaker_name: str
    resolution_accepted: bool = False
    behavioral_traits: List[str] = Field(default_factory=list)

    def to_turn(self) -> ConversationTurn:
        return ConversationTurn(
            speaker="guest",
            content=self.message,
            speaker_name=self.speaker_name,
            resolution_accepted=self.resolution_accepted,
        )


def generate_guest_turn(
    llm: Any,
    scenario: Scenario,
    persona: Persona,
    conversation: List[ConversationTurn],
    history_window: int = HISTORY_WINDOW,
) -> GuestReply:
    """
    Guest agent: produces the next guest utterance in character.
    The conversation must be empty (opening line) or end with a trainee turn.
    """
    if conversation and conversation[-1].speaker != "trainee":
        raise InvalidTurnRole("The guest can only reply to a trainee turn")

    system_prompt = f"""
You are playing the role of a GUEST of a short-term rental company in a training simulation.
The person writing to you is a virtual assistant (VA) in training.

Persona:
{persona_description(persona)}

Scenario: {scenario.scenario_title}
Business context: {scenario.business_context}
Your situation: {scenario.guest_situation}

Guidelines:
- Stay strictly in character as the guest.
- If the conversation has not started, open it by stating your problem.
- Respond in short, conversational turns (1-3 sentences).
- Reflect realistic emotions; calm down gradually when the VA is helpful,
  get more frustrated when they are vague or dismissive.
- Escalate at most once, and accept a clear path to resolution afterwards.
- Only set resolution_accepted to true when the VA has actually solved the
  core problem in a way that meets your expectations.
- Do NOT reveal that you are an AI or mention 'simulation' or 'LLM'.

Return JSON:
{{"message": string, "resolution_accepted": boolean, "behavioral_traits": [string]}}
"""

    window = recent_turns(conversation, history_window)
    convo: List[BaseMessage] = [SystemMessage(content=system_prompt)] + _as_chat_messages(window)
    if not window:
        convo.append(HumanMessage(content="(The chat has just opened. Send your first message.)"))

    logger.debug("Generating guest turn (%d turns in window)", len(window))
    text = invoke_model(llm, convo)

    try:
        data = parse_json_object(text)
    except ModelError:
        # Plain prose is an acceptable guest reply
        data = {"message": text}

    message = str(data.get("message") or "").strip()
    if not message:
        raise ModelError("Guest reply had no message")

    traits = data.get("behavioral_traits") or []
    return GuestReply(
        message=message,
        speaker_name=persona.name,
        resolution_accepted=data.get("resolution_accepted") is True,
        behavioral_traits=[str(t) for t in traits] if isinstance(traits, list) else [],
    )


# ---------- Evaluator ----------

def rate_trainee_turn(
    llm: Any,
    scenario: Scenario,
    persona: Persona,
    conversation: List[ConversationTurn],
    latest_turn: ConversationTurn,
    history_window: int = HISTORY_WINDOW,
) -> TurnRating:
    """
    Rate the trainee's latest message on a 1-5 scale with a reason and
    improvement suggestions.
    """
    if latest_turn.speaker != "trainee":
        raise InvalidTurnRole("Only trainee turns can be rated")

    # Context is everything before the turn being rated
    context = list(conversation)
    if context and context[-1] is latest_turn:
        context = context[:-1]

    eval_prompt = f"""
You are an evaluation agent for a short-term rental VIRTUAL ASSISTANT training simulation.

Scenario: {scenario.scenario_title} (difficulty: {scenario.difficulty_level})
Policies the VA must respect:
{_bullets(scenario.constraints_and_policies)}
Success criteria:
{_bullets(scenario.success_criteria)}

Guest: {persona.name}, mood: {persona.emotional_tone}

Recent conversation:
{_transcript(recent_turns(context, history_window)) or "(no earlier messages)"}

The VA's latest message:
\"\"\"{latest_turn.content}\"\"\"

Rate ONLY the latest VA message from 1 (poor) to 5 (excellent) for empathy,
clarity, policy adherence and progress towards resolution.
If the VA ignores the guest's emotion or question, the rating should be 1 or 2.
Only give 5 when the answer is clearly strong and well-structured.

Return STRICT JSON:
{{
  "rating": integer,
  "reason": string,
  "suggestions": [string]
}}
No explanation, no extra keys, just JSON.
"""

    text = invoke_model(llm, [HumanMessage(content=eval_prompt)])
    data = parse_json_object(text)

    try:
        rating = int(round(float(data.get("rating"))))
    except (TypeError, ValueError) as exc:
        raise ModelError("Evaluator returned no numeric rating") from exc

    suggestions = data.get("suggestions") or []
    if isinstance(suggestions, str):
        suggestions = [suggestions]

    try:
        return TurnRating(
            rating=min(max(rating, 1), 5),
            reason=str(data.get("reason") or "").strip(),
            suggestions=[str(s).strip() for s in suggestions if str(s).strip()],
        )
    except ValidationError as exc:
        raise ModelError(f"Evaluator output was malformed: {exc}") from exc


# ---------- Scenario / persona authoring ----------

_SCENARIO_SCHEMA = """{
  "scenario_title": string,
  "business_context": string,
  "guest_situation": string,
  "constraints_and_policies": [string],
  "expected_challenges": [string],
  "difficulty_level": "easy" | "medium" | "hard",
  "success_criteria": [string],
  "opening_line": string
}"""

_PERSONA_SCHEMA = """{
  "name": string,
  "demographics": string,
  "personality_traits": [string],
  "communication_style": string,
  "emotional_tone": string,
  "expectations": [string],
  "escalation_behavior": [string]
}"""


def _known_fields(data: Dict[str, Any], model: type) -> Dict[str, Any]:
    # Models sometimes add keys of their own; keep only the schema's fields
    return {k: v for k, v in data.items() if k in model.model_fields}


def generate_scenario(llm: Any, custom_description: Optional[str] = None) -> Scenario:
    """
    Generate a structured training scenario, optionally expanding a
    trainer-supplied description.
    """
    custom = ""
    if custom_description:
        custom = (
            "The trainer provided this scenario idea. Keep its core intent and expand it "
            f"with proper structure:\n\"\"\"{custom_description}\"\"\"\n"
        )

    prompt = f"""
You are a scenario generating agent for a short-term rental (STR) virtual assistant training platform.
Create one realistic guest-communication scenario grounded in STR operations
(bookings, check-in, maintenance, vendor coordination, policy enforcement).

{custom}
Return STRICT JSON matching:
{_SCENARIO_SCHEMA}
"""
    data = parse_json_object(invoke_model(llm, [HumanMessage(content=prompt)]))
    try:
        scenario = parse_scenario(_known_fields(data, Scenario))
    except SchemaError as exc:
        raise ModelError(f"Generated scenario was malformed: {exc}") from exc

    logger.info("Generated scenario %r", scenario.scenario_title)
    return scenario


def generate_persona(
    llm: Any,
    scenario: Optional[Scenario] = None,
    custom_description: Optional[str] = None,
) -> Persona:
    """
    Generate a guest persona that fits the scenario, optionally expanding a
    trainer-supplied description.
    """
    custom = ""
    if custom_description:
        custom = (
            "The trainer provided this persona idea. Keep its core intent and expand it "
            f"with proper structure:\n\"\"\"{custom_description}\"\"\"\n"
        )
    scenario_block = ""
    if scenario is not None:
        scenario_block = f"Scenario:\n{scenario.model_dump_json(exclude={'completion'})}\n"

    prompt = f"""
You are a persona generating agent for an STR virtual assistant training platform.
Create a realistic guest persona whose behaviour will drive the simulated guest.

{scenario_block}
{custom}
Return STRICT JSON matching:
{_PERSONA_SCHEMA}
"""
    data = parse_json_object(invoke_model(llm, [HumanMessage(content=prompt)]))
    try:
        persona = parse_persona(_known_fields(data, Persona))
    except SchemaError as exc:
        raise ModelError(f"Generated persona was malformed: {exc}") from exc

    logger.info("Generated persona %r", persona.name)
    return persona


def refine_scenario(llm: Any, raw_description: str) -> Scenario:
    if not raw_description or not raw_description.strip():
        raise SchemaError("A scenario description is required")
    return generate_scenario(llm, custom_description=raw_description.strip())


def refine_persona(llm: Any, raw_description: str, scenario: Optional[Scenario] = None) -> Persona:
    if not raw_description or not raw_description.strip():
        raise SchemaError("A persona description is required")
    return generate_persona(llm, scenario=scenario, custom_description=raw_description.strip())


# ---------- Session-level assessment (for end-of-run summary) ----------

def build_session_assessment(llm: Any, session: SessionState) -> str:
    """
    Build a concise end-of-session assessment from the rated transcript.

    - summary of overall performance
    - at least one positive example with [Turn N] + quote
    - at least one needs-improvement example with [Turn N] + quote
    """
    turn_log = []
    number = 0
    for t in session.conversation:
        if t.speaker != "trainee":
            continue
        number += 1
        turn_log.append(
            {
                "turn": number,
                "trainee": t.content,
                "rating": t.rating,
                "reason": t.rating_reason,
                "suggestions": t.suggestions,
            }
        )

    if not turn_log:
        return "No trainee messages to assess."

    prompt = f"""
You are an assessment agent for a short-term rental VIRTUAL ASSISTANT training simulation.

Scenario: {session.scenario.scenario_title}
Success criteria:
{_bullets(session.scenario.success_criteria)}

Full transcript:
{_transcript(session.conversation)}

Per-turn ratings for the trainee (JSON, rating may be null when unavailable):
{json.dumps(turn_log, indent=2)}

Your job:
1. Give a brief summary (3-5 bullet points) of how the trainee performed.
2. Provide at least ONE clearly positive example, cited like: [Turn N] "<trainee quote>"
3. Provide at least ONE needs-improvement example, cited the same way.
4. Keep the total under 250 words, specific and actionable.

Return plain text only in this structure:

Summary:
- ...

Positive example:
- [Turn N] "..."

Needs improvement:
- [Turn N] "..."
"""
    return invoke_model(llm, [HumanMessage(content=prompt)]).strip()
