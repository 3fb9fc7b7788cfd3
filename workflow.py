# workflow.py
from typing import Any, List, Optional
import logging

from langgraph.graph import StateGraph, END

from agents import (
    build_session_assessment,
    generate_guest_turn,
    generate_persona,
    generate_scenario,
    rate_trainee_turn,
)
from completion import check_completion
from config import DIALOGUE_MODEL, EVAL_MODEL, FEEDBACK_MODEL, HISTORY_WINDOW, get_chat_model
from errors import ModelError, ModelUnavailable, SchemaError, SessionNotActive
from personas import Persona
from scenarios import Scenario
from state import ConversationTurn, SessionState, WorkflowState

logger = logging.getLogger(__name__)


class TrainingWorkflow:
    """
    Per-turn training pipeline:

        validate -> append_trainee -> evaluate -> check_completion -> guest

    Holds only read-only collaborators (models, compiled graph), so one
    instance can serve many sessions concurrently. Every call works on a
    copy of the caller's state and returns a new SessionState.
    """

    def __init__(
        self,
        dialogue_llm: Any,
        eval_llm: Any,
        authoring_llm: Any = None,
        feedback_llm: Any = None,
        history_window: int = HISTORY_WINDOW,
    ):
        self.dialogue_llm = dialogue_llm
        self.eval_llm = eval_llm
        self.authoring_llm = authoring_llm or dialogue_llm
        self.feedback_llm = feedback_llm or eval_llm
        self.history_window = history_window
        self._graph = self._build_graph()

    @classmethod
    def from_config(cls) -> "TrainingWorkflow":
        return cls(
            dialogue_llm=get_chat_model(DIALOGUE_MODEL, temperature=0.8),
            eval_llm=get_chat_model(EVAL_MODEL, temperature=0.0),
            authoring_llm=get_chat_model(DIALOGUE_MODEL, temperature=0.9),
            feedback_llm=get_chat_model(FEEDBACK_MODEL, temperature=0.3),
        )

    # ---------- Nodes ----------

    def _validate_node(self, state: WorkflowState) -> WorkflowState:
        status = state.get("status", "active")
        if status != "active":
            raise SessionNotActive(status)
        return {**state, "new_trainee_turn": False, "completion_reason": None}

    def _append_trainee_node(self, state: WorkflowState) -> WorkflowState:
        conversation: List[ConversationTurn] = list(state.get("conversation", []))
        message = (state.get("trainee_message") or "").strip()

        if not message:
            # Without a trainee message only a forced end or the opening line is possible
            awaiting_trainee = bool(conversation) and conversation[-1].speaker == "guest"
            if awaiting_trainee and not state.get("force_end"):
                raise SchemaError("A trainee message is required to continue the session")
            return {**state, "conversation": conversation}

        if conversation and conversation[-1].speaker == "trainee":
            raise SchemaError("The guest has not replied to the previous trainee turn yet")

        conversation.append(ConversationTurn(speaker="trainee", content=message))
        return {**state, "conversation": conversation, "new_trainee_turn": True}

    def _evaluate_node(self, state: WorkflowState) -> WorkflowState:
        if not state.get("new_trainee_turn"):
            return state

        conversation: List[ConversationTurn] = list(state["conversation"])
        latest = conversation[-1]
        try:
            rating = rate_trainee_turn(
                self.eval_llm,
                state["scenario"],
                state["persona"],
                conversation,
                latest,
                history_window=self.history_window,
            )
        except Exception:
            # A missing rating must never block the turn
            logger.warning("Turn evaluation failed; continuing without a rating", exc_info=True)
            return {**state, "last_rating": None, "last_rating_reason": None}

        conversation[-1] = latest.with_rating(rating)
        logger.info("Trainee turn rated %d/5", rating.rating)
        return {
            **state,
            "conversation": conversation,
            "last_rating": rating.rating,
            "last_rating_reason": rating.reason,
        }

    def _check_completion_node(self, state: WorkflowState) -> WorkflowState:
        decision = check_completion(
            state["scenario"],
            state["conversation"],
            force_end=bool(state.get("force_end")),
        )
        if decision.completed:
            return {
                **state,
                "status": "completed",
                "feedback": decision.feedback,
                "completion_reason": decision.reason,
                "next": "end",
            }
        return {**state, "next": "guest"}

    def _guest_node(self, state: WorkflowState) -> WorkflowState:
        conversation: List[ConversationTurn] = list(state["conversation"])
        try:
            reply = generate_guest_turn(
                self.dialogue_llm,
                state["scenario"],
                state["persona"],
                conversation,
                history_window=self.history_window,
            )
        except (ModelUnavailable, ModelError) as exc:
            # Let the caller see how far the turn got (trainee turn + rating)
            exc.partial_state = self._to_session(state)
            raise

        conversation.append(reply.to_turn())
        return {**state, "conversation": conversation, "next": "end"}

    # ---------- Graph ----------

    def _build_graph(self):
        graph = StateGraph(WorkflowState)

        graph.add_node("validate", self._validate_node)
        graph.add_node("append_trainee", self._append_trainee_node)
        graph.add_node("evaluate", self._evaluate_node)
        graph.add_node("check_completion", self._check_completion_node)
        graph.add_node("guest", self._guest_node)

        def route_from_completion(state: WorkflowState) -> str:
            return state["next"]

        graph.set_entry_point("validate")
        graph.add_edge("validate", "append_trainee")
        graph.add_edge("append_trainee", "evaluate")
        graph.add_edge("evaluate", "check_completion")
        graph.add_conditional_edges(
            "check_completion",
            route_from_completion,
            {"guest": "guest", "end": END},
        )
        graph.add_edge("guest", END)

        return graph.compile()

    @staticmethod
    def _to_state(session: SessionState, trainee_message: Optional[str], force_end: bool) -> WorkflowState:
        return {
            "scenario": session.scenario,
            "persona": session.persona,
            "conversation": list(session.conversation),
            "status": session.status,
            "last_rating": session.last_rating,
            "last_rating_reason": session.last_rating_reason,
            "feedback": session.feedback,
            "trainee_message": trainee_message,
            "force_end": force_end,
            "new_trainee_turn": False,
            "completion_reason": None,
            "next": "guest",
        }

    @staticmethod
    def _to_session(state: WorkflowState) -> SessionState:
        return SessionState(
            scenario=state["scenario"],
            persona=state["persona"],
            conversation=list(state["conversation"]),
            status=state["status"],
            last_rating=state.get("last_rating"),
            last_rating_reason=state.get("last_rating_reason"),
            feedback=state.get("feedback"),
        )

    # ---------- Public operations ----------

    def run_turn(
        self,
        session: SessionState,
        trainee_message: Optional[str] = None,
        force_end: bool = False,
    ) -> SessionState:
        """
        Run one trainee turn through the pipeline and return the updated
        session. The session passed in is left untouched, whatever happens.
        """
        logger.info(
            "Running turn (status=%s, %d turns so far, force_end=%s)",
            session.status,
            len(session.conversation),
            force_end,
        )
        result = self._graph.invoke(self._to_state(session, trainee_message, force_end))
        return self._to_session(result)

    def start_session(self, scenario: Scenario, persona: Persona) -> SessionState:
        """
        New active session. The guest opens with the scenario's opening line
        when it has one, otherwise with a generated message.
        """
        if scenario.opening_line:
            opening = ConversationTurn(
                speaker="guest",
                content=scenario.opening_line,
                speaker_name=persona.name,
            )
            return SessionState(scenario=scenario, persona=persona, conversation=[opening])

        return self.run_turn(SessionState(scenario=scenario, persona=persona))

    def create_session(
        self,
        custom_scenario: Optional[str] = None,
        custom_persona: Optional[str] = None,
    ) -> SessionState:
        scenario = generate_scenario(self.authoring_llm, custom_description=custom_scenario)
        persona = generate_persona(self.authoring_llm, scenario, custom_description=custom_persona)
        return self.start_session(scenario, persona)

    def end_session(self, session: SessionState, trainee_message: Optional[str] = None) -> SessionState:
        return self.run_turn(session, trainee_message=trainee_message, force_end=True)

    def assess_session(self, session: SessionState) -> str:
        return build_session_assessment(self.feedback_llm, session)


# ---------- Status flips outside the per-turn pipeline ----------

def pause_session(session: SessionState) -> SessionState:
    if session.status != "active":
        raise SessionNotActive(session.status, action="be paused")
    return session.model_copy(update={"status": "paused"})


def resume_session(session: SessionState) -> SessionState:
    if session.status != "paused":
        raise SessionNotActive(session.status, action="be resumed")
    return session.model_copy(update={"status": "active"})


def appended_turns(before: SessionState, after: SessionState) -> List[ConversationTurn]:
    """
    Turns added by one invocation; these are what the caller persists.
    """
    return list(after.conversation[len(before.conversation):])
