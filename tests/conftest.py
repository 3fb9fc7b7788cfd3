import json
import sys
from pathlib import Path

import pytest
from langchain_core.messages import AIMessage

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from personas import parse_persona
from scenarios import parse_scenario
from state import ConversationTurn, SessionState


class ScriptedModel:
    """
    Chat model stand-in: replays replies in order (the last one repeats)
    and records every prompt. Exceptions in the script are raised.
    """

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    def invoke(self, messages):
        self.calls.append(messages)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, BaseException):
            raise reply
        return AIMessage(content=reply)


def rating_json(rating, reason="ok", suggestions=()):
    return json.dumps({"rating": rating, "reason": reason, "suggestions": list(suggestions)})


def guest_json(message, resolution_accepted=False):
    return json.dumps(
        {"message": message, "resolution_accepted": resolution_accepted, "behavioral_traits": ["tired"]}
    )


SCENARIO_PAYLOAD = {
    "scenarioTitle": "Late check-out",
    "businessContext": "Next guests arrive at 3 pm.",
    "guestSituation": "Guest wants to stay until 2 pm.",
    "constraintsAndPolicies": ["Late check-out after noon costs 30 EUR."],
    "expectedChallenges": ["Explaining the fee politely"],
    "difficultyLevel": "Easy",
    "successCriteria": ["Offers a paid late check-out"],
    "completion": {
        "maxTraineeTurns": 3,
        "successPhrases": ["late check-out is confirmed"],
        "guestEndPhrases": ["goodbye"],
    },
}

PERSONA_PAYLOAD = {
    "name": "Tom Becker",
    "demographics": "29-year-old on a weekend trip.",
    "personalityTraits": ["laid back"],
    "communicationStyle": "Casual, short messages.",
    "emotionalTone": "Relaxed",
    "expectations": ["A late check-out"],
    "escalationBehavior": ["Asks for a discount"],
}


@pytest.fixture
def scenario():
    return parse_scenario(SCENARIO_PAYLOAD)


@pytest.fixture
def persona():
    return parse_persona(PERSONA_PAYLOAD)


@pytest.fixture
def session(scenario, persona):
    opening = ConversationTurn(
        speaker="guest", content="Hey, can I stay a bit longer tomorrow?", speaker_name=persona.name
    )
    return SessionState(scenario=scenario, persona=persona, conversation=[opening])
