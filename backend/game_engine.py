import json
import logging
import re
import time
from typing import Callable, Dict, List, Optional

import config
from errors import DuplicateKeyError, ErrorKind
from models import AnswerResult, OperationResult, ParticipantAnswer, Question, VotingSession
from notifier import Notifier
from participants import ParticipantService
from store import Store
from voting_engine import VotingService

logger = logging.getLogger(__name__)

MAX_QUESTION_TEXT_LENGTH = 2000
MAX_OPTION_LENGTH = 500


def _sanitize_text(text: str) -> str:
    """Strip HTML tags and control characters."""
    text = re.sub(r'<[^>]+>', '', text)
    text = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', text)
    return text.strip()


class QuestionService:
    def __init__(self, store: Store, notifier: Notifier, clock: Callable[[], float] = time.time):
        self.store = store
        self.notifier = notifier
        self.clock = clock

    async def create_question(self, question_text: str, options: Dict[str, str], correct_answer: str,
                              points: Optional[int] = None, is_active: bool = False) -> Question:
        question_text = _sanitize_text(question_text)[:MAX_QUESTION_TEXT_LENGTH]
        if not question_text:
            raise ValueError("Question text is required")
        options = {str(k): _sanitize_text(str(v))[:MAX_OPTION_LENGTH] for k, v in (options or {}).items()}
        if len(options) < 2:
            raise ValueError("A question needs at least 2 options")
        if correct_answer not in options:
            raise ValueError("Correct answer must be one of the option keys")
        points = config.DEFAULT_QUESTION_POINTS if points is None else points
        if points < 0:
            raise ValueError("Points cannot be negative")
        question = await self.store.questions.create(Question(
            question_text=question_text,
            options=options,
            correct_answer=correct_answer,
            points=points,
            is_active=is_active,
            created_at=self.clock(),
        ))
        logger.info("Question created: %s", question.id)
        return question

    async def find_active(self) -> List[Question]:
        return await self.store.questions.find_many({"is_active": True}, order_by="created_at")

    async def find_all(self) -> List[Question]:
        return await self.store.questions.find_many(order_by="created_at")

    async def find_one(self, question_id: str, active_only: bool = True) -> Optional[Question]:
        where = {"id": question_id}
        if active_only:
            where["is_active"] = True
        return await self.store.questions.find_one(where)

    async def ensure_first_question_active(self):
        first = await self.store.questions.find_one(order_by="created_at")
        if first is not None and not first.is_active:
            await self.store.questions.update({"id": first.id}, {"is_active": True})
            logger.info("First question %s activated", first.id)

    async def release_next_question(self) -> Optional[Question]:
        """Activate the earliest inactive question and announce it."""
        nxt = await self.store.questions.find_one({"is_active": False}, order_by="created_at")
        if nxt is None:
            return None
        await self.store.questions.update({"id": nxt.id}, {"is_active": True})
        nxt = nxt.model_copy(update={"is_active": True})
        logger.info("Question released: %s", nxt.id)
        await self.notifier.question_released(nxt.public())
        return nxt

    async def reset_all_questions(self) -> dict:
        """Deactivate every question, then reactivate only the first one."""
        total = await self.store.questions.count()
        await self.store.questions.update({}, {"is_active": False})
        await self.ensure_first_question_active()
        logger.info("Questions reset (%d total)", total)
        await self.notifier.questions_reset()
        return {
            "message": "All questions have been reset. Only the first question is now active.",
            "questions_reset": total,
        }

    async def seed_from_file(self, path: str) -> int:
        """Load questions from a JSON list if the store has none yet."""
        if not path or await self.store.questions.count() > 0:
            return 0
        try:
            with open(path, encoding="utf-8") as f:
                items = json.load(f)
        except (OSError, json.JSONDecodeError):
            logger.exception("Could not read questions file %s", path)
            return 0
        created = 0
        for item in items:
            try:
                await self.create_question(
                    item["question_text"], item["options"], item["correct_answer"], item.get("points"))
                created += 1
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping invalid question in %s: %s", path, exc)
        logger.info("Seeded %d questions from %s", created, path)
        return created


class GameService:
    def __init__(self, store: Store, participants: ParticipantService, questions: QuestionService,
                 voting: VotingService, notifier: Notifier, clock: Callable[[], float] = time.time):
        self.store = store
        self.participants = participants
        self.questions = questions
        self.voting = voting
        self.notifier = notifier
        self.clock = clock

    async def submit_answer(self, participant_id: str, question_id: str, selected_answer: str,
                            password: str) -> AnswerResult:
        if not await self.participants.validate_password(participant_id, password):
            return AnswerResult(success=False, error=ErrorKind.INVALID_CREDENTIAL, message="Invalid password")

        question = await self.questions.find_one(question_id)
        if question is None:
            return AnswerResult(success=False, error=ErrorKind.NOT_FOUND,
                                message="Question not found or not released yet")
        if selected_answer not in question.options:
            return AnswerResult(success=False, error=ErrorKind.VALIDATION_FAILURE,
                                message="Unknown answer option")

        is_correct = selected_answer == question.correct_answer
        try:
            await self.store.answers.create(ParticipantAnswer(
                participant_id=participant_id,
                question_id=question_id,
                selected_answer=selected_answer,
                is_correct=is_correct,
                answered_at=self.clock(),
            ))
        except DuplicateKeyError:
            return AnswerResult(success=False, error=ErrorKind.DUPLICATE_ANSWER,
                                message="You have already answered this question")

        points = question.points if is_correct else 0
        if is_correct:
            await self.participants.update_score(participant_id, points)

        result = AnswerResult(
            success=True,
            is_correct=is_correct,
            points=points,
            message="Correct answer!" if is_correct else "Incorrect answer",
        )
        logger.info("Answer from %s on %s: %s", participant_id, question_id,
                    "correct" if is_correct else "incorrect")
        await self.notifier.answer_result(participant_id, result)
        await self.notifier.leaderboard_update(await self.participants.leaderboard_views(config.LEADERBOARD_SIZE))

        await self.check_for_tie()
        return result

    async def check_for_tie(self) -> Optional[VotingSession]:
        """Open a tie-break vote once everyone has answered every active question.

        Never raises: a broken tie check must not fail the answer that triggered it.
        """
        try:
            active_ids = {q.id for q in await self.questions.find_active()}
            num_participants = await self.store.participants.count()
            if not active_ids or not num_participants:
                return None
            total_answers = await self.store.answers.count({"question_id": active_ids})
            if total_answers < len(active_ids) * num_participants:
                return None
            logger.info("All %d participants answered all %d active questions; checking for a tie",
                        num_participants, len(active_ids))
            return await self.voting.detect_tie_and_open()
        except Exception:
            logger.exception("Tie check failed")
            return None

    async def get_participant_answers(self, participant_id: str) -> List[ParticipantAnswer]:
        return await self.store.answers.find_many(
            {"participant_id": participant_id}, order_by="answered_at", descending=True)

    async def wipe_participants(self) -> OperationResult:
        """Admin bulk wipe: cancel any running tie-break, then delete all participants."""
        active = await self.store.voting_sessions.find_one({"status": "active"})
        if active is not None:
            await self.voting.cancel(active.id)
        removed = await self.store.wipe_participants()
        await self.notifier.leaderboard_update([])
        return OperationResult.ok(f"Deleted {removed} participants")
