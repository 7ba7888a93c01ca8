"""Entities, operation results and broadcast payloads."""
import time
import uuid
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from errors import ErrorKind


def new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------

class Participant(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    score: int = 0
    password_hash: str = ""
    created_at: float = Field(default_factory=time.time)

    def view(self, questions_answered: int = 0) -> "ParticipantView":
        return ParticipantView(
            id=self.id,
            name=self.name,
            score=self.score,
            questions_answered=questions_answered,
        )


class ParticipantView(BaseModel):
    """Participant as shown to clients; never carries the password hash."""
    id: str
    name: str
    score: int
    questions_answered: int = 0


class Question(BaseModel):
    id: str = Field(default_factory=new_id)
    question_text: str
    options: Dict[str, str]  # insertion-ordered option key -> text
    correct_answer: str
    points: int = 10
    is_active: bool = False
    created_at: float = Field(default_factory=time.time)

    def public(self) -> dict:
        """Question without its correct answer."""
        return self.model_dump(exclude={"correct_answer"})


class ParticipantAnswer(BaseModel):
    id: str = Field(default_factory=new_id)
    participant_id: str
    question_id: str
    selected_answer: str
    is_correct: bool
    answered_at: float = Field(default_factory=time.time)


class VotingSession(BaseModel):
    id: str = Field(default_factory=new_id)
    tied_participants: List[str]
    tied_score: int
    status: str = "active"  # active, completed, cancelled
    eliminated_participant_id: Optional[str] = None
    voting_time_in_seconds: int = 60
    voting_ends_at: float
    created_at: float = Field(default_factory=time.time)


class Vote(BaseModel):
    id: str = Field(default_factory=new_id)
    voting_session_id: str
    voter_participant_id: str
    target_participant_id: str
    created_at: float = Field(default_factory=time.time)


class Poll(BaseModel):
    id: str = Field(default_factory=new_id)
    title: str
    description: Optional[str] = None
    is_active: bool = False
    time_limit: int = 300
    poll_ends_at: Optional[float] = None
    status: str = "pending"  # pending, active, completed, cancelled
    created_at: float = Field(default_factory=time.time)


class PollRanking(BaseModel):
    id: str = Field(default_factory=new_id)
    poll_id: str
    ranker_participant_id: str
    ranked_participant_id: str
    rank: int
    created_at: float = Field(default_factory=time.time)


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------

class OperationResult(BaseModel):
    success: bool
    message: str
    error: Optional[ErrorKind] = None

    @classmethod
    def ok(cls, message: str) -> "OperationResult":
        return cls(success=True, message=message)

    @classmethod
    def fail(cls, error: ErrorKind, message: str) -> "OperationResult":
        return cls(success=False, message=message, error=error)


class AnswerResult(OperationResult):
    is_correct: bool = False
    points: int = 0


class ParticipantResult(OperationResult):
    participant: Optional[ParticipantView] = None


class VotingSessionDetail(BaseModel):
    voting_session: VotingSession
    votes: List[Vote]


class PollDetail(BaseModel):
    poll: Poll
    rankings: List[PollRanking]


class RankingEntry(BaseModel):
    participant_id: str
    rank: int = Field(ge=1)


class VotingResults(BaseModel):
    voting_session: VotingSession
    votes: List[Vote]
    vote_count: Dict[str, int]
    total_votes: int
    eliminated_participant: Optional[ParticipantView] = None


class PollResultEntry(BaseModel):
    participant_id: str
    participant_name: str
    average_rank: float
    total_points: int


class EliminatedEntry(BaseModel):
    participant_id: str
    participant_name: str


class PollResults(BaseModel):
    poll: Poll
    results: List[PollResultEntry]
    eliminated_participants: List[EliminatedEntry]


# ---------------------------------------------------------------------------
# Broadcast payloads, one per event name
# ---------------------------------------------------------------------------

class LeaderboardUpdate(BaseModel):
    leaderboard: List[ParticipantView]


class AnswerResultEvent(BaseModel):
    participant_id: str
    result: AnswerResult


class QuestionReleased(BaseModel):
    question: dict


class QuestionsReset(BaseModel):
    message: str = "All questions have been reset"


class VotingSessionStarted(BaseModel):
    voting_session: VotingSession
    tied_participants: List[ParticipantView]


class VoteUpdate(BaseModel):
    voting_session_id: str


class VotingSessionEnded(BaseModel):
    session_id: str
    results: VotingResults


class VotingSessionCancelled(BaseModel):
    session_id: str


class PollActivated(BaseModel):
    poll: Poll


class PollRankingUpdate(BaseModel):
    poll_id: str


class PollEnded(BaseModel):
    poll_id: str
    results: PollResults
