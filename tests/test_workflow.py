import pytest

from completion import FORCED, MAX_TURNS, SUCCESS_PHRASE
from conftest import ScriptedModel, guest_json, rating_json
from errors import ModelError, ModelUnavailable, SchemaError, SessionNotActive
from scenarios import init_session_state
from state import SessionState
from workflow import TrainingWorkflow, appended_turns, pause_session, resume_session


def make_workflow(guest_replies=("Okay, what does it cost?",), ratings=(rating_json(4, "Clear"),)):
    dialogue = ScriptedModel(*[r if isinstance(r, BaseException) else guest_json(r) for r in guest_replies])
    evaluator = ScriptedModel(*ratings)
    return TrainingWorkflow(dialogue_llm=dialogue, eval_llm=evaluator), dialogue, evaluator


def test_continuation_appends_trainee_and_guest(session):
    workflow, _, _ = make_workflow()

    updated = workflow.run_turn(session, trainee_message="Let me check that for you.")

    assert len(updated.conversation) == len(session.conversation) + 2
    trainee_turn, guest_turn = updated.conversation[-2:]
    assert trainee_turn.speaker == "trainee"
    assert trainee_turn.rating == 4
    assert trainee_turn.rating_reason == "Clear"
    assert guest_turn.speaker == "guest"
    assert guest_turn.content == "Okay, what does it cost?"
    assert guest_turn.speaker_name == "Tom Becker"
    assert updated.status == "active"
    assert updated.last_rating == 4
    assert updated.feedback is None
    assert appended_turns(session, updated) == [trainee_turn, guest_turn]


def test_input_session_is_never_mutated(session):
    workflow, _, _ = make_workflow()
    before = session.model_copy(deep=True)
    workflow.run_turn(session, trainee_message="Hello!")
    assert session == before


def test_max_turns_completes_without_guest_reply(session):
    workflow, dialogue, _ = make_workflow()

    state = workflow.run_turn(session, trainee_message="first")
    state = workflow.run_turn(state, trainee_message="second")
    calls_before = len(dialogue.calls)
    final = workflow.run_turn(state, trainee_message="third")

    assert final.status == "completed"
    assert final.feedback is not None
    assert final.feedback.completion_reason == MAX_TURNS
    assert final.feedback.rated_turns == 3
    assert len(final.conversation) == len(state.conversation) + 1
    assert final.conversation[-1].speaker == "trainee"
    assert len(dialogue.calls) == calls_before


def test_success_phrase_completes_immediately(session):
    workflow, dialogue, _ = make_workflow()

    final = workflow.run_turn(session, trainee_message="Done, your late check-out is confirmed for 2 pm.")

    assert final.status == "completed"
    assert final.feedback.completion_reason == SUCCESS_PHRASE
    assert len(final.conversation) == len(session.conversation) + 1
    assert dialogue.calls == []


@pytest.mark.parametrize("status", ["paused", "completed"])
def test_inactive_sessions_reject_turns(session, status):
    workflow, dialogue, evaluator = make_workflow()
    closed = session.model_copy(update={"status": status})

    with pytest.raises(SessionNotActive):
        workflow.run_turn(closed, trainee_message="Hello?")
    assert dialogue.calls == [] and evaluator.calls == []


def test_completion_is_monotonic(session):
    workflow, _, _ = make_workflow()
    final = workflow.end_session(session)
    assert final.status == "completed"
    assert final.feedback.completion_reason == FORCED

    with pytest.raises(SessionNotActive):
        workflow.run_turn(final, trainee_message="one more thing")
    with pytest.raises(SessionNotActive):
        resume_session(final)


@pytest.mark.parametrize(
    "failure",
    [ModelUnavailable("rate limited"), ModelError("garbage"), RuntimeError("evaluator crashed")],
)
def test_evaluator_failure_does_not_block_generation(session, failure):
    workflow, dialogue, _ = make_workflow(ratings=(failure,))

    updated = workflow.run_turn(session, trainee_message="Let me look into it.")

    trainee_turn, guest_turn = updated.conversation[-2:]
    assert trainee_turn.rating is None
    assert trainee_turn.suggestions == []
    assert guest_turn.speaker == "guest"
    assert updated.last_rating is None
    assert len(dialogue.calls) == 1


def test_generation_timeout_keeps_rated_trainee_turn(session):
    workflow, _, _ = make_workflow(guest_replies=(TimeoutError("model timed out"),))

    with pytest.raises(ModelUnavailable) as info:
        workflow.run_turn(session, trainee_message="Let me check.")

    partial = info.value.partial_state
    assert isinstance(partial, SessionState)
    assert len(partial.conversation) == len(session.conversation) + 1
    assert partial.conversation[-1].speaker == "trainee"
    assert partial.conversation[-1].rating == 4
    assert len(session.conversation) == 1


def test_persistent_generation_failure_appends_no_guest_turn(session):
    workflow, _, _ = make_workflow(guest_replies=(ModelError("bad request"),))

    with pytest.raises(ModelError) as info:
        workflow.run_turn(session, trainee_message="Let me check.")
    assert info.value.partial_state.conversation[-1].speaker == "trainee"


def test_trainee_message_required_to_continue(session):
    workflow, _, _ = make_workflow()
    with pytest.raises(SchemaError):
        workflow.run_turn(session, trainee_message="   ")


def test_end_session_with_final_message_rates_it(session):
    workflow, dialogue, evaluator = make_workflow()
    final = workflow.end_session(session, trainee_message="Thanks for reaching out!")

    assert final.status == "completed"
    assert final.conversation[-1].rating == 4
    assert len(evaluator.calls) == 1
    assert dialogue.calls == []


def test_start_session_uses_opening_line(scenario, persona):
    workflow, dialogue, _ = make_workflow()
    with_opening = scenario.model_copy(update={"opening_line": "Hi there, quick question!"})

    started = workflow.start_session(with_opening, persona)

    assert [t.content for t in started.conversation] == ["Hi there, quick question!"]
    assert dialogue.calls == []


def test_start_session_generates_opening_line(scenario, persona):
    workflow, dialogue, evaluator = make_workflow(guest_replies=("Hey, can I check out late?",))

    started = workflow.start_session(scenario, persona)

    assert len(started.conversation) == 1
    assert started.conversation[0].speaker == "guest"
    assert started.conversation[0].content == "Hey, can I check out late?"
    assert evaluator.calls == []
    assert len(dialogue.calls) == 1


def test_create_session_generates_scenario_and_persona():
    authoring = ScriptedModel(
        '{"scenario_title": "Noise complaint", "guest_situation": "Neighbours are loud",'
        ' "opening_line": "It is 2 am and the party next door is still going."}',
        '{"name": "Priya", "communication_style": "direct", "emotional_tone": "exhausted"}',
    )
    workflow = TrainingWorkflow(
        dialogue_llm=ScriptedModel("unused"),
        eval_llm=ScriptedModel("unused"),
        authoring_llm=authoring,
    )

    session = workflow.create_session(custom_scenario="loud neighbours at night")

    assert session.scenario.scenario_title == "Noise complaint"
    assert session.persona.name == "Priya"
    assert session.conversation[0].content.startswith("It is 2 am")
    assert "loud neighbours at night" in authoring.calls[0][0].content


def test_pause_and_resume_only_flip_status(session):
    paused = pause_session(session)
    assert paused.status == "paused"
    assert paused.conversation == session.conversation
    assert resume_session(paused).status == "active"

    with pytest.raises(SessionNotActive):
        pause_session(paused)
    with pytest.raises(SessionNotActive):
        resume_session(session)


def test_seed_session_full_run():
    workflow, _, _ = make_workflow(
        guest_replies=("Can you at least find us a place tonight?",),
        ratings=(rating_json(2, "No empathy", ["Apologise first"]), rating_json(5, "Solved it")),
    )
    session = init_session_state("double_booking")

    session = workflow.run_turn(session, trainee_message="Please hold.")
    session = workflow.run_turn(session, trainee_message="I'm so sorry. I've booked you into the unit next door.")

    assert session.status == "completed"
    assert session.feedback.completion_reason == SUCCESS_PHRASE
    assert session.feedback.average_rating == 3.5
    assert session.feedback.weaknesses == ["No empathy"]
    assert session.feedback.strengths == ["Solved it"]
    assert session.feedback.suggestions == ["Apologise first"]


def test_workflow_is_reusable_across_sessions(session, scenario, persona):
    workflow, _, _ = make_workflow()
    other = workflow.start_session(
        scenario.model_copy(update={"opening_line": "Different guest here"}), persona
    )

    a = workflow.run_turn(session, trainee_message="Hello A")
    b = workflow.run_turn(other, trainee_message="Hello B")

    assert a.conversation[1].content == "Hello A"
    assert b.conversation[0].content == "Different guest here"
    assert b.conversation[1].content == "Hello B"
