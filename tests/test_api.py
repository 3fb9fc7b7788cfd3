import pytest
from fastapi.testclient import TestClient

from api import app, get_workflow
from conftest import PERSONA_PAYLOAD, SCENARIO_PAYLOAD, ScriptedModel, guest_json, rating_json
from workflow import TrainingWorkflow


@pytest.fixture
def client():
    workflow = TrainingWorkflow(
        dialogue_llm=ScriptedModel(guest_json("How much is it?")),
        eval_llm=ScriptedModel(rating_json(3, "Fine", ["Be specific"])),
        feedback_llm=ScriptedModel("Summary:\n- Solid"),
    )
    app.dependency_overrides[get_workflow] = lambda: workflow
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _body(**extra):
    return {
        "scenario": SCENARIO_PAYLOAD,
        "persona": PERSONA_PAYLOAD,
        "conversationHistory": [{"speaker": "guest", "content": "Can I stay longer?"}],
        **extra,
    }


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_list_scenarios(client):
    ids = {item["id"] for item in client.get("/scenarios").json()}
    assert ids == {"double_booking", "early_checkin", "broken_ac"}


def test_start_from_seed(client):
    resp = client.post("/session/start", json={"scenarioId": "early_checkin"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "active"
    assert data["conversation"][0]["speaker"] == "guest"


def test_start_unknown_seed_is_422(client):
    resp = client.post("/session/start", json={"scenarioId": "nope"})
    assert resp.status_code == 422
    assert resp.json()["errorType"] == "SchemaError"


def test_update_returns_new_turns(client):
    resp = client.post("/session/update", json=_body(traineeMessage="Let me check."))
    assert resp.status_code == 200
    data = resp.json()
    assert data["lastRating"] == 3
    assert data["lastRatingReason"] == "Fine"
    assert [t["speaker"] for t in data["newTurns"]] == ["trainee", "guest"]
    assert data["newTurns"][0]["suggestions"] == ["Be specific"]


def test_update_on_paused_session_is_409(client):
    resp = client.post("/session/update", json=_body(status="paused", traineeMessage="Hi"))
    assert resp.status_code == 409
    assert resp.json()["errorType"] == "SessionNotActive"


def test_malformed_scenario_is_422(client):
    body = _body(traineeMessage="Hi")
    body["scenario"] = {"scenarioTitle": "missing situation"}
    assert client.post("/session/update", json=body).status_code == 422


def test_end_then_update_is_rejected(client):
    ended = client.post("/session/end", json=_body())
    assert ended.status_code == 200
    data = ended.json()
    assert data["status"] == "completed"
    assert data["feedback"]["completionReason"] == "forced"

    again = client.post(
        "/session/update",
        json={
            "scenario": data["scenario"],
            "persona": data["persona"],
            "conversationHistory": data["conversation"],
            "status": data["status"],
            "feedback": data["feedback"],
            "traineeMessage": "Wait!",
        },
    )
    assert again.status_code == 409


def test_pause_and_resume(client):
    paused = client.post("/session/pause", json=_body())
    assert paused.json()["status"] == "paused"
    resumed = client.post("/session/resume", json=_body(status="paused"))
    assert resumed.json()["status"] == "active"


def test_model_unavailable_is_503_with_partial_state():
    workflow = TrainingWorkflow(
        dialogue_llm=ScriptedModel(TimeoutError("slow")),
        eval_llm=ScriptedModel(rating_json(4)),
    )
    app.dependency_overrides[get_workflow] = lambda: workflow
    try:
        resp = TestClient(app).post("/session/update", json=_body(traineeMessage="One moment."))
    finally:
        app.dependency_overrides.clear()

    assert resp.status_code == 503
    partial = resp.json()["partialState"]
    assert partial["conversation"][-1]["rating"] == 4


def test_assessment(client):
    body = _body()
    body["conversationHistory"].append({"speaker": "trainee", "content": "Sure", "rating": 4})
    resp = client.post("/session/assessment", json=body)
    assert resp.json() == {"assessment": "Summary:\n- Solid"}


def test_refine_requires_description(client):
    resp = client.post("/scenario/refine", json={"description": " "})
    assert resp.status_code == 422
