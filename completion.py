# completion.py
from collections import Counter
from dataclasses import dataclass
from typing import List, Optional
import logging

from errors import AggregationError
from scenarios import Scenario
from state import ConversationTurn, Feedback

logger = logging.getLogger(__name__)

# Completion reasons, in the order they are checked
FORCED = "forced"
SUCCESS_PHRASE = "success_phrase"
GUEST_ENDED = "guest_ended"
MAX_TURNS = "max_turns"

_REASON_TEXT = {
    FORCED: "ended by the trainee",
    SUCCESS_PHRASE: "the scenario objective was reached",
    GUEST_ENDED: "the guest ended the conversation",
    MAX_TURNS: "the maximum number of turns was reached",
}

MAX_LISTED = 3


@dataclass(frozen=True)
class CompletionDecision:
    completed: bool
    reason: Optional[str] = None
    feedback: Optional[Feedback] = None


def _normalise(text: str) -> str:
    return " ".join(text.lower().split())


def contains_phrase(text: str, phrases: List[str]) -> bool:
    normalised = _normalise(text)
    return any(_normalise(p) in normalised for p in phrases if p.strip())


def _latest(conversation: List[ConversationTurn], speaker: str) -> Optional[ConversationTurn]:
    for turn in reversed(conversation):
        if turn.speaker == speaker:
            return turn
    return None


def _guest_ended(scenario: Scenario, conversation: List[ConversationTurn]) -> bool:
    """
    True when the guest turn the trainee just answered closed the interaction.
    """
    if len(conversation) < 2 or conversation[-1].speaker != "trainee":
        return False
    guest_turn = conversation[-2]
    policy = scenario.completion
    if policy.end_on_resolution and guest_turn.resolution_accepted:
        return True
    return contains_phrase(guest_turn.content, policy.guest_end_phrases)


def completion_reason(
    scenario: Scenario,
    conversation: List[ConversationTurn],
    force_end: bool = False,
) -> Optional[str]:
    policy = scenario.completion
    if force_end:
        return FORCED

    latest_trainee = _latest(conversation, "trainee")
    if (
        latest_trainee is not None
        and conversation[-1] is latest_trainee
        and contains_phrase(latest_trainee.content, policy.success_phrases)
    ):
        return SUCCESS_PHRASE

    if _guest_ended(scenario, conversation):
        return GUEST_ENDED

    trainee_count = sum(1 for t in conversation if t.speaker == "trainee")
    if trainee_count >= policy.max_trainee_turns:
        return MAX_TURNS

    return None


def check_completion(
    scenario: Scenario,
    conversation: List[ConversationTurn],
    force_end: bool = False,
) -> CompletionDecision:
    """
    Decide whether the session should end after the latest trainee turn and,
    if so, synthesize the final feedback.
    """
    reason = completion_reason(scenario, conversation, force_end=force_end)
    if reason is None:
        return CompletionDecision(completed=False)

    logger.info("Session complete: %s", reason)
    return CompletionDecision(
        completed=True,
        reason=reason,
        feedback=synthesize_feedback(conversation, reason),
    )


# ---------- Feedback aggregation ----------

def _tier(average: Optional[float]) -> str:
    if average is None:
        return "not rated"
    if average >= 4.5:
        return "excellent"
    if average >= 3.5:
        return "proficient"
    if average >= 2.5:
        return "developing"
    return "needs improvement"


def _unique(items: List[str], limit: int) -> List[str]:
    seen = set()
    out = []
    for item in items:
        key = _normalise(item)
        if not key or key in seen:
            continue
        seen.add(key)
        out.append(item.strip())
        if len(out) == limit:
            break
    return out


def _suggestion_themes(turns: List[ConversationTurn], limit: int) -> List[str]:
    counts: Counter = Counter()
    first_text = {}
    for turn in turns:
        for suggestion in turn.suggestions:
            key = _normalise(suggestion)
            if not key:
                continue
            counts[key] += 1
            first_text.setdefault(key, suggestion.strip())
    # most_common keeps first-seen order among equal counts
    return [first_text[key] for key, _ in counts.most_common(limit)]


def aggregate_feedback(conversation: List[ConversationTurn], reason: str) -> Feedback:
    """
    Deterministic roll-up of the per-turn ratings attached to the trainee's
    turns. Same conversation in, same feedback out.
    """
    trainee_turns = [t for t in conversation if t.speaker == "trainee"]
    rated = [t for t in trainee_turns if t.rating is not None]

    for turn in rated:
        if not 1 <= turn.rating <= 5:
            raise AggregationError(f"Rating {turn.rating!r} is outside the 1-5 scale")

    average = round(sum(t.rating for t in rated) / len(rated), 2) if rated else None
    tier = _tier(average)
    reason_text = _REASON_TEXT.get(reason, reason)

    if average is None:
        summary = (
            f"No ratings were available for {len(trainee_turns)} trainee turn(s). "
            f"Session ended because {reason_text}."
        )
    else:
        summary = (
            f"{len(rated)} of {len(trainee_turns)} trainee turn(s) rated, "
            f"average {average:.2f}/5 ({tier}). Session ended because {reason_text}."
        )

    return Feedback(
        summary=summary,
        average_rating=average,
        rated_turns=len(rated),
        total_trainee_turns=len(trainee_turns),
        strengths=_unique([t.rating_reason or "" for t in rated if t.rating >= 4], MAX_LISTED),
        weaknesses=_unique([t.rating_reason or "" for t in rated if t.rating <= 2], MAX_LISTED),
        suggestions=_suggestion_themes(rated, MAX_LISTED),
        overall_assessment=tier,
        completion_reason=reason,
    )


def synthesize_feedback(conversation: List[ConversationTurn], reason: str) -> Feedback:
    """
    aggregate_feedback(), degrading to a feedback without a summary when the
    aggregation itself fails. The completion transition never fails here.
    """
    try:
        return aggregate_feedback(conversation, reason)
    except AggregationError as exc:
        logger.warning("Feedback aggregation failed, returning degraded feedback: %s", exc)
        trainee_count = sum(1 for t in conversation if t.speaker == "trainee")
        return Feedback(
            summary=None,
            total_trainee_turns=trainee_count,
            completion_reason=reason,
        )
