from fastapi import FastAPI, WebSocket, HTTPException, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, field_validator
from typing import Dict, List, Optional
from contextlib import asynccontextmanager
import uvicorn
import logging
import socket as socketlib

import config
config.setup_logging()

from auth import admin_auth
from errors import NotFoundError
from game_engine import GameService, QuestionService
from models import RankingEntry
from notifier import Notifier
from participants import ParticipantService
from poll_engine import PollService
from scheduler import DeadlineScheduler
from store import Store
from voting_engine import VotingService

logger = logging.getLogger(__name__)

store = Store()
scheduler = DeadlineScheduler()
notifier = Notifier(token_validator=admin_auth.validate)
participant_service = ParticipantService(store)
question_service = QuestionService(store, notifier)
voting_service = VotingService(store, participant_service, notifier, scheduler)
poll_service = PollService(store, participant_service, notifier, scheduler)
game_service = GameService(store, participant_service, question_service, voting_service, notifier)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Kingdom Quiz backend")
    await question_service.seed_from_file(config.QUESTIONS_FILE)
    await question_service.ensure_first_question_active()
    yield
    scheduler.shutdown()
    logger.info("Shutting down Kingdom Quiz backend")


app = FastAPI(title="Kingdom Quiz Backend", lifespan=lifespan)


def get_local_ip():
    try:
        s = socketlib.socket(socketlib.AF_INET, socketlib.SOCK_DGRAM)
        s.connect(("8.8.8.8", 80))
        ip = s.getsockname()[0]
        s.close()
        return ip
    except Exception:
        return "127.0.0.1"


security = HTTPBearer(auto_error=False)


async def require_admin(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> str:
    """FastAPI dependency protecting admin routes."""
    if credentials is None:
        raise HTTPException(status_code=401, detail="No token provided")
    if not admin_auth.validate(credentials.credentials):
        raise HTTPException(status_code=401, detail="Invalid token")
    return credentials.credentials


def _result_response(result, success_status: int = 200):
    status = success_status if result.success else 400
    return JSONResponse(status_code=status, content=result.model_dump(mode="json"))


# --- Request bodies ---

class AdminLoginRequest(BaseModel):
    password: str


class ParticipantCreateRequest(BaseModel):
    name: str
    password: str


class ParticipantLoginRequest(BaseModel):
    name: str
    password: str


class QuestionCreateRequest(BaseModel):
    question_text: str
    options: Dict[str, str]
    correct_answer: str
    points: Optional[int] = None
    is_active: bool = False


class SubmitAnswerRequest(BaseModel):
    participant_id: str
    question_id: str
    selected_answer: str
    password: str


class SubmitVoteRequest(BaseModel):
    voting_session_id: str
    voter_participant_id: str
    target_participant_id: str
    password: str


class CreatePollRequest(BaseModel):
    title: str
    description: Optional[str] = None
    time_limit: Optional[int] = None

    @field_validator('title')
    @classmethod
    def validate_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError('Title is required')
        return v

    @field_validator('time_limit')
    @classmethod
    def validate_time_limit(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < config.MIN_POLL_TIME_LIMIT:
            raise ValueError(f'Time limit must be at least {config.MIN_POLL_TIME_LIMIT} seconds')
        return v


class SubmitRankingsRequest(BaseModel):
    poll_id: str
    ranker_participant_id: str
    password: str
    rankings: List[RankingEntry]


# --- Admin ---

@app.post("/api/admin/login")
async def admin_login(request: AdminLoginRequest):
    token = admin_auth.login(request.password)
    if token is None:
        return {"success": False, "message": "Invalid password. Access denied."}
    return {"success": True, "token": token, "message": "Authentication successful"}


@app.get("/api/admin/validate")
async def admin_validate(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)):
    if credentials is None:
        return {"valid": False, "message": "No token provided"}
    valid = admin_auth.validate(credentials.credentials)
    return {"valid": valid, "message": "Token is valid" if valid else "Invalid token"}


@app.delete("/api/admin/users/all")
async def delete_all_participants(_admin: str = Depends(require_admin)):
    return await game_service.wipe_participants()


# --- Participants ---

@app.post("/api/participants")
async def register_participant(request: ParticipantCreateRequest):
    result = await participant_service.register(request.name, request.password)
    return _result_response(result, success_status=201)


@app.post("/api/participants/login")
async def login_participant(request: ParticipantLoginRequest):
    result = await participant_service.login(request.name, request.password)
    return JSONResponse(status_code=200 if result.success else 401, content=result.model_dump(mode="json"))


@app.get("/api/participants")
async def list_participants():
    return await participant_service.views(await participant_service.find_all())


@app.get("/api/participants/leaderboard")
async def get_leaderboard():
    return await participant_service.leaderboard_views(config.LEADERBOARD_SIZE)


@app.get("/api/participants/{participant_id}")
async def get_participant(participant_id: str):
    participant = await participant_service.find_one(participant_id)
    if participant is None:
        raise HTTPException(status_code=404, detail="Participant not found")
    return await participant_service.view(participant)


# --- Questions ---

@app.get("/api/questions")
async def list_active_questions():
    return [q.public() for q in await question_service.find_active()]


@app.get("/api/questions/all")
async def list_all_questions(_admin: str = Depends(require_admin)):
    return await question_service.find_all()


@app.post("/api/questions", status_code=201)
async def create_question(request: QuestionCreateRequest, _admin: str = Depends(require_admin)):
    try:
        return await question_service.create_question(
            request.question_text, request.options, request.correct_answer,
            points=request.points, is_active=request.is_active)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@app.post("/api/questions/release-next")
async def release_next_question(_admin: str = Depends(require_admin)):
    question = await question_service.release_next_question()
    if question is None:
        return {"success": False, "message": "No more questions to release"}
    return {"success": True, "question": question.public(), "message": "Question released"}


@app.post("/api/questions/reset-all")
async def reset_all_questions(_admin: str = Depends(require_admin)):
    return await question_service.reset_all_questions()


@app.get("/api/questions/{question_id}")
async def get_question(question_id: str):
    question = await question_service.find_one(question_id)
    if question is None:
        raise HTTPException(status_code=404, detail="Question not found")
    return question.public()


# --- Game ---

@app.post("/api/game/submit-answer")
async def submit_answer(request: SubmitAnswerRequest):
    return await game_service.submit_answer(
        request.participant_id, request.question_id, request.selected_answer, request.password)


@app.get("/api/game/participant/{participant_id}/answers")
async def get_participant_answers(participant_id: str):
    return await game_service.get_participant_answers(participant_id)


# --- Elimination voting ---

@app.post("/api/voting/detect-tie")
async def detect_tie(_admin: str = Depends(require_admin)):
    session = await voting_service.detect_tie_and_open()
    return {
        "success": session is not None,
        "voting_session": session,
        "message": "Tie detected, voting session created" if session else "No tie detected",
    }


@app.post("/api/voting/submit")
async def submit_vote(request: SubmitVoteRequest):
    return await voting_service.submit_vote(
        request.voting_session_id, request.voter_participant_id,
        request.target_participant_id, request.password)


@app.get("/api/voting/active")
async def get_active_voting_session():
    detail = await voting_service.get_active_session()
    return {"success": detail is not None, "voting_session": detail}


@app.get("/api/voting/all")
async def get_all_voting_sessions():
    return {"success": True, "sessions": await voting_service.get_all_sessions()}


@app.get("/api/voting/session/{session_id}")
async def get_voting_session(session_id: str):
    detail = await voting_service.get_session(session_id)
    if detail is None:
        raise HTTPException(status_code=404, detail="Voting session not found")
    return {"success": True, "voting_session": detail}


@app.get("/api/voting/results/{session_id}")
async def get_voting_results(session_id: str):
    try:
        results = await voting_service.get_results(session_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Voting session not found")
    return {"success": True, "results": results}


@app.post("/api/voting/end/{session_id}")
async def end_voting_session(session_id: str, _admin: str = Depends(require_admin)):
    results = await voting_service.close(session_id)
    if results is None:
        return {"success": False, "message": "Voting session not found or already ended"}
    return {"success": True, "message": "Voting session ended", "results": results}


@app.post("/api/voting/cancel/{session_id}")
async def cancel_voting_session(session_id: str, _admin: str = Depends(require_admin)):
    return await voting_service.cancel(session_id)


# --- Ranked polls ---

@app.post("/api/poll/create")
async def create_poll(request: CreatePollRequest, _admin: str = Depends(require_admin)):
    try:
        poll = await poll_service.create_poll(request.title, request.description, request.time_limit)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"success": True, "poll": poll, "message": "Poll created successfully"}


@app.post("/api/poll/activate/{poll_id}")
async def activate_poll(poll_id: str, _admin: str = Depends(require_admin)):
    try:
        poll = await poll_service.activate_poll(poll_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Poll not found")
    return {"success": True, "poll": poll, "message": "Poll activated successfully"}


@app.get("/api/poll/active")
async def get_active_poll():
    return {"success": True, "poll": await poll_service.get_active_poll()}


@app.get("/api/poll/all")
async def get_all_polls(_admin: str = Depends(require_admin)):
    return {"success": True, "polls": await poll_service.get_all_polls()}


@app.post("/api/poll/submit-rankings")
async def submit_rankings(request: SubmitRankingsRequest):
    return await poll_service.submit_rankings(
        request.poll_id, request.ranker_participant_id, request.password, request.rankings)


@app.get("/api/poll/results/{poll_id}")
async def get_poll_results(poll_id: str):
    try:
        results = await poll_service.get_poll_results(poll_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Poll not found")
    return {"success": True, "results": results}


@app.post("/api/poll/end/{poll_id}")
async def end_poll(poll_id: str, _admin: str = Depends(require_admin)):
    results = await poll_service.end_poll(poll_id)
    if results is None:
        return {"success": False, "message": "Poll not found or already ended"}
    return {"success": True, "message": "Poll ended successfully", "results": results}


@app.post("/api/poll/delete/{poll_id}")
async def delete_poll(poll_id: str, _admin: str = Depends(require_admin)):
    return await poll_service.delete_poll(poll_id)


@app.get("/api/poll/{poll_id}")
async def get_poll(poll_id: str):
    detail = await poll_service.get_poll(poll_id)
    if detail is None:
        raise HTTPException(status_code=404, detail="Poll not found")
    return {"success": True, "poll": detail}


# --- WebSocket ---

@app.websocket("/ws/{client_id}")
async def websocket_endpoint(websocket: WebSocket, client_id: str):
    await notifier.serve(websocket, client_id)


# Configure CORS
if config.ALLOWED_ORIGINS.strip():
    origins = [o.strip() for o in config.ALLOWED_ORIGINS.split(",")]
    notifier.allowed_origins = origins
else:
    local_ip = get_local_ip()
    origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        f"http://{local_ip}:3000",
    ]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.get("/")
async def root():
    return {"message": "Kingdom Quiz API is running"}


@app.get("/health")
async def health():
    return {"status": "healthy"}


if __name__ == "__main__":
    uvicorn.run("main:app", host=config.HOST, port=config.PORT, reload=True)
