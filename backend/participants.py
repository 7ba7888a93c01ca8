import logging
import re
from collections import Counter
from typing import List, Optional

import config
from auth import CredentialHasher, credential_hasher
from errors import DuplicateKeyError, ErrorKind
from models import Participant, ParticipantResult, ParticipantView
from store import Store

logger = logging.getLogger(__name__)


def _sanitize_name(name: str) -> str:
    """Strip HTML tags and control characters from a display name."""
    name = re.sub(r'<[^>]+>', '', name)
    name = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', name)
    return name.strip()


class ParticipantService:
    def __init__(self, store: Store, hasher: CredentialHasher = None):
        self.store = store
        self.hasher = hasher or credential_hasher

    async def register(self, name: str, password: str) -> ParticipantResult:
        name = _sanitize_name(name or "")
        if not (config.MIN_NAME_LENGTH <= len(name) <= config.MAX_NAME_LENGTH):
            return ParticipantResult(
                success=False, error=ErrorKind.VALIDATION_FAILURE,
                message=f"Name must be {config.MIN_NAME_LENGTH}-{config.MAX_NAME_LENGTH} characters",
            )
        if not password or not (config.MIN_PASSWORD_LENGTH <= len(password) <= config.MAX_PASSWORD_LENGTH):
            return ParticipantResult(
                success=False, error=ErrorKind.VALIDATION_FAILURE,
                message=f"Password must be at least {config.MIN_PASSWORD_LENGTH} characters",
            )

        participant = Participant(name=name, password_hash=self.hasher.hash(password))
        try:
            participant = await self.store.participants.create(participant)
        except DuplicateKeyError:
            return ParticipantResult(success=False, error=ErrorKind.NAME_TAKEN,
                                     message="That name is already taken")
        logger.info("Participant registered: %s (%s)", participant.name, participant.id)
        return ParticipantResult(success=True, message="Registration successful",
                                 participant=participant.view())

    async def login(self, name: str, password: str) -> ParticipantResult:
        participant = await self.store.participants.find_one({"name": _sanitize_name(name or "")})
        if participant is None or not self.hasher.compare(password, participant.password_hash):
            return ParticipantResult(success=False, error=ErrorKind.INVALID_CREDENTIAL,
                                     message="Invalid name or password")
        return ParticipantResult(success=True, message="Login successful",
                                 participant=await self.view(participant))

    async def validate_password(self, participant_id: str, password: str) -> bool:
        participant = await self.store.participants.find_one({"id": participant_id})
        if participant is None:
            return False
        return self.hasher.compare(password, participant.password_hash)

    async def find_one(self, participant_id: str) -> Optional[Participant]:
        return await self.store.participants.find_one({"id": participant_id})

    async def find_all(self) -> List[Participant]:
        return await self.get_leaderboard()

    async def get_leaderboard(self, limit: Optional[int] = None) -> List[Participant]:
        """Participants by score, highest first; equal scores keep registration order."""
        return await self.store.participants.find_many(order_by="score", descending=True, limit=limit)

    async def update_score(self, participant_id: str, points: int) -> Optional[Participant]:
        await self.store.participants.increment({"id": participant_id}, "score", points, floor=0)
        return await self.find_one(participant_id)

    async def apply_penalty(self, participant_id: str, penalty: int) -> Optional[Participant]:
        """Lower a score by ``penalty`` without letting it go below zero."""
        return await self.update_score(participant_id, -penalty)

    async def view(self, participant: Participant) -> ParticipantView:
        answered = await self.store.answers.count({"participant_id": participant.id})
        return participant.view(answered)

    async def views(self, participants: List[Participant]) -> List[ParticipantView]:
        answers = await self.store.answers.find_many({"participant_id": {p.id for p in participants}})
        counts = Counter(a.participant_id for a in answers)
        return [p.view(counts.get(p.id, 0)) for p in participants]

    async def leaderboard_views(self, limit: Optional[int] = None) -> List[ParticipantView]:
        return await self.views(await self.get_leaderboard(limit))
