"""WebSocket fan-out of game events.

Clients connect to ``/ws`` and join rooms by message:
``{"type": "joinAdmin", "token": ...}`` or
``{"type": "joinParticipant", "participant_id": ...}``.
Every outgoing message is ``{"type": <event name>, **payload}``.
"""
import json
import logging
from collections import defaultdict
from typing import Callable, Dict, Iterable, List, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel

import config
from models import (
    AnswerResult, AnswerResultEvent, LeaderboardUpdate, ParticipantView, Poll, PollActivated,
    PollEnded, PollRankingUpdate, PollResults, QuestionReleased, QuestionsReset, VoteUpdate,
    VotingResults, VotingSession, VotingSessionCancelled, VotingSessionEnded, VotingSessionStarted,
)

logger = logging.getLogger(__name__)

ADMIN_ROOM = "admin"


def participant_room(participant_id: str) -> str:
    return f"participant_{participant_id}"


class Notifier:
    def __init__(self, token_validator: Optional[Callable[[str], bool]] = None):
        self.connections: Dict[str, WebSocket] = {}
        self.rooms: Dict[str, Set[str]] = defaultdict(set)  # room -> client ids
        self.allowed_origins: List[str] = []
        self.token_validator = token_validator

    # -- connection bookkeeping ------------------------------------------------

    def join(self, client_id: str, room: str):
        self.rooms[room].add(client_id)

    def disconnect(self, client_id: str):
        self.connections.pop(client_id, None)
        for members in self.rooms.values():
            members.discard(client_id)

    async def serve(self, websocket: WebSocket, client_id: str):
        origin = websocket.headers.get("origin", "")
        if self.allowed_origins and origin not in self.allowed_origins:
            logger.warning("Rejected WebSocket from unauthorized origin: %s", origin)
            await websocket.close(code=1008)
            return

        await websocket.accept()
        self.connections[client_id] = websocket
        await websocket.send_json({"type": "connected", "client_id": client_id})

        try:
            while True:
                data = await websocket.receive_text()
                if len(data) > config.MAX_WS_MESSAGE_SIZE:
                    await websocket.send_json({"type": "error", "message": "Message too large"})
                    continue
                try:
                    message = json.loads(data)
                except json.JSONDecodeError:
                    logger.warning("Malformed JSON from client %s: %s", client_id, data[:100])
                    await websocket.send_json({"type": "error", "message": "Invalid message format"})
                    continue
                if not isinstance(message, dict):
                    await websocket.send_json({"type": "error", "message": "Invalid message format"})
                    continue
                await self.handle_message(websocket, client_id, message)
        except WebSocketDisconnect:
            logger.info("Client %s disconnected", client_id)
        except Exception:
            logger.exception("WebSocket error for client %s", client_id)
        finally:
            self.disconnect(client_id)

    async def handle_message(self, websocket: WebSocket, client_id: str, message: dict):
        msg_type = message.get("type")

        if msg_type == "joinAdmin":
            token = message.get("token", "")
            if not self.token_validator or not self.token_validator(token):
                await websocket.send_json({"type": "error", "message": "Invalid admin token"})
                return
            self.join(client_id, ADMIN_ROOM)
            logger.info("Admin joined: %s", client_id)
            await websocket.send_json({"type": "joined", "room": ADMIN_ROOM})

        elif msg_type == "joinParticipant":
            participant_id = message.get("participant_id")
            if not isinstance(participant_id, str) or not participant_id:
                await websocket.send_json({"type": "error", "message": "participant_id is required"})
                return
            room = participant_room(participant_id)
            self.join(client_id, room)
            logger.info("Participant %s joined: %s", participant_id, client_id)
            await websocket.send_json({"type": "joined", "room": room})

        elif msg_type == "ping":
            await websocket.send_json({"type": "pong"})

    # -- fan-out ---------------------------------------------------------------

    async def _send(self, client_ids: Iterable[str], message: dict):
        disconnected = []
        for client_id in list(client_ids):
            ws = self.connections.get(client_id)
            if ws is None:
                continue
            try:
                await ws.send_json(message)
            except Exception:
                disconnected.append(client_id)
        for client_id in disconnected:
            self.disconnect(client_id)

    async def emit(self, event: str, payload: BaseModel, rooms: Optional[Iterable[str]] = None):
        """Send ``event`` to the given rooms, or to every connection when ``rooms`` is None."""
        message = {"type": event, **payload.model_dump(mode="json")}
        if rooms is None:
            targets = set(self.connections)
        else:
            targets = set()
            for room in rooms:
                targets |= self.rooms.get(room, set())
        logger.debug("Emitting %s to %d clients", event, len(targets))
        await self._send(targets, message)

    # -- named events ----------------------------------------------------------

    async def leaderboard_update(self, leaderboard: List[ParticipantView]):
        await self.emit("leaderboardUpdate", LeaderboardUpdate(leaderboard=leaderboard), rooms=[ADMIN_ROOM])

    async def answer_result(self, participant_id: str, result: AnswerResult):
        await self.emit("answerResult", AnswerResultEvent(participant_id=participant_id, result=result),
                        rooms=[participant_room(participant_id)])

    async def question_released(self, question: dict):
        await self.emit("questionReleased", QuestionReleased(question=question))

    async def questions_reset(self):
        await self.emit("questionsReset", QuestionsReset())

    async def voting_session_started(self, session: VotingSession, tied: List[ParticipantView]):
        rooms = [participant_room(p.id) for p in tied] + [ADMIN_ROOM]
        await self.emit("votingSessionStarted",
                        VotingSessionStarted(voting_session=session, tied_participants=tied), rooms=rooms)

    async def vote_update(self, session_id: str):
        await self.emit("voteUpdate", VoteUpdate(voting_session_id=session_id))

    async def voting_session_ended(self, session_id: str, results: VotingResults):
        await self.emit("votingSessionEnded", VotingSessionEnded(session_id=session_id, results=results))

    async def voting_session_cancelled(self, session_id: str):
        await self.emit("votingSessionCancelled", VotingSessionCancelled(session_id=session_id))

    async def poll_activated(self, poll: Poll):
        await self.emit("pollActivated", PollActivated(poll=poll))

    async def poll_ranking_update(self, poll_id: str):
        await self.emit("pollRankingUpdate", PollRankingUpdate(poll_id=poll_id))

    async def poll_ended(self, poll_id: str, results: PollResults):
        await self.emit("pollEnded", PollEnded(poll_id=poll_id, results=results))
