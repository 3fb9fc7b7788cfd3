# api.py
from functools import lru_cache
from typing import Any, Dict, List, Optional
import logging

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from agents import refine_persona, refine_scenario
from config import OPENAI_API_KEY, setup_logging
from errors import (
    InvalidTurnRole,
    ModelError,
    ModelUnavailable,
    SchemaError,
    SessionNotActive,
    TrainingError,
)
from personas import PERSONAS, parse_persona
from scenarios import SCENARIOS, init_session_state, parse_scenario
from state import SessionState, parse_session
from workflow import TrainingWorkflow, appended_turns, pause_session, resume_session

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Guest Roleplay Training Simulation")

# ---- CORS (so a small web demo can call this) ----
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],   # dev-only
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def get_workflow() -> TrainingWorkflow:
    # Built on first use and shared read-only by every request
    return TrainingWorkflow.from_config()


# ---------- Pydantic models ----------

class _Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StartRequest(_Body):
    scenario_id: Optional[str] = None
    scenario: Optional[Dict[str, Any]] = None
    persona: Optional[Dict[str, Any]] = None
    custom_scenario: Optional[str] = None
    custom_persona: Optional[str] = None


class SessionRequest(_Body):
    scenario: Dict[str, Any]
    persona: Dict[str, Any]
    conversation_history: List[Dict[str, Any]] = Field(default_factory=list)
    status: str = "active"
    last_rating: Optional[int] = None
    last_rating_reason: Optional[str] = None
    feedback: Optional[Dict[str, Any]] = None

    def to_session(self) -> SessionState:
        return parse_session(
            {
                "scenario": self.scenario,
                "persona": self.persona,
                "conversation": self.conversation_history,
                "status": self.status,
                "last_rating": self.last_rating,
                "last_rating_reason": self.last_rating_reason,
                "feedback": self.feedback,
            }
        )


class UpdateRequest(SessionRequest):
    trainee_message: Optional[str] = None
    force_end: bool = False


class RefineRequest(_Body):
    description: str
    scenario: Optional[Dict[str, Any]] = None


def _session_response(session: SessionState, before: Optional[SessionState] = None) -> Dict[str, Any]:
    payload = session.to_payload()
    if before is not None:
        payload["newTurns"] = [
            t.model_dump(by_alias=True, mode="json") for t in appended_turns(before, session)
        ]
    return payload


# ---------- Error mapping ----------

_STATUS_CODES = {
    SchemaError: 422,
    SessionNotActive: 409,
    ModelUnavailable: 503,
    ModelError: 502,
    InvalidTurnRole: 500,
}


@app.exception_handler(TrainingError)
async def training_error_handler(request: Request, exc: TrainingError):
    status_code = next(
        (code for cls, code in _STATUS_CODES.items() if isinstance(exc, cls)),
        500,
    )
    logger.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc)
    body: Dict[str, Any] = {"error": str(exc), "errorType": type(exc).__name__}
    partial = getattr(exc, "partial_state", None)
    if isinstance(partial, SessionState):
        body["partialState"] = partial.to_payload()
    return JSONResponse(status_code=status_code, content=body)


@app.get("/health")
def health():
    return {"status": "ok", "openai_key_loaded": bool(OPENAI_API_KEY)}


@app.get("/scenarios")
def list_scenarios():
    return [
        {
            "id": scenario_id,
            "title": entry["scenario"]["scenario_title"],
            "difficulty": entry["scenario"]["difficulty_level"],
            "personaId": entry["persona_id"],
            "personaName": PERSONAS[entry["persona_id"]]["name"],
        }
        for scenario_id, entry in SCENARIOS.items()
    ]


# ---------- Start a session ----------

@app.post("/session/start")
def start_session(req: StartRequest, workflow: TrainingWorkflow = Depends(get_workflow)):
    if req.scenario_id:
        session = init_session_state(req.scenario_id)
    elif req.scenario is not None and req.persona is not None:
        session = workflow.start_session(parse_scenario(req.scenario), parse_persona(req.persona))
    else:
        session = workflow.create_session(
            custom_scenario=req.custom_scenario,
            custom_persona=req.custom_persona,
        )
    return _session_response(session)


# ---------- One trainee turn ----------

@app.post("/session/update")
def update_session(req: UpdateRequest, workflow: TrainingWorkflow = Depends(get_workflow)):
    session = req.to_session()
    updated = workflow.run_turn(
        session,
        trainee_message=req.trainee_message,
        force_end=req.force_end,
    )
    return _session_response(updated, before=session)


@app.post("/session/end")
def end_session(req: UpdateRequest, workflow: TrainingWorkflow = Depends(get_workflow)):
    session = req.to_session()
    updated = workflow.end_session(session, trainee_message=req.trainee_message)
    return _session_response(updated, before=session)


@app.post("/session/pause")
def pause(req: SessionRequest):
    return _session_response(pause_session(req.to_session()))


@app.post("/session/resume")
def resume(req: SessionRequest):
    return _session_response(resume_session(req.to_session()))


# ---------- End-of-session assessment ----------

@app.post("/session/assessment")
def session_assessment(req: SessionRequest, workflow: TrainingWorkflow = Depends(get_workflow)):
    session = req.to_session()
    return {"assessment": workflow.assess_session(session)}


# ---------- Scenario / persona refinement ----------

@app.post("/scenario/refine")
def scenario_refine(req: RefineRequest, workflow: TrainingWorkflow = Depends(get_workflow)):
    scenario = refine_scenario(workflow.authoring_llm, req.description)
    return scenario.model_dump(by_alias=True, mode="json")


@app.post("/persona/refine")
def persona_refine(req: RefineRequest, workflow: TrainingWorkflow = Depends(get_workflow)):
    scenario = parse_scenario(req.scenario) if req.scenario is not None else None
    persona = refine_persona(workflow.authoring_llm, req.description, scenario=scenario)
    return persona.model_dump(by_alias=True, mode="json")
