"""Error kinds reported by game, voting and poll operations."""
from enum import Enum


class ErrorKind(str, Enum):
    INVALID_CREDENTIAL = "InvalidCredential"
    NOT_FOUND = "NotFound"
    ALREADY_ENDED = "AlreadyEnded"
    EXPIRED = "Expired"
    NOT_ELIGIBLE = "NotEligible"
    SELF_TARGET = "SelfTarget"
    DUPLICATE_ANSWER = "DuplicateAnswer"
    VALIDATION_FAILURE = "ValidationFailure"
    NAME_TAKEN = "NameTaken"

    # Per-operation reasons, each a refinement of one of the kinds above
    SESSION_NOT_FOUND = "SessionNotFound"
    SESSION_ENDED = "SessionEnded"
    VOTING_EXPIRED = "VotingExpired"
    INVALID_TARGET = "InvalidTarget"
    SELF_VOTE = "SelfVote"
    POLL_NOT_FOUND = "PollNotFound"
    POLL_ENDED = "PollEnded"
    POLL_EXPIRED = "PollExpired"
    SELF_RANK = "SelfRank"
    INVALID_PARTICIPANT = "InvalidParticipant"


class NotFoundError(LookupError):
    """Raised when a lookup the caller depends on finds nothing."""

    def __init__(self, entity: str, key: str):
        super().__init__(f"{entity} not found: {key}")
        self.entity = entity
        self.key = key


class DuplicateKeyError(ValueError):
    """Raised by the store when a uniqueness constraint would be violated."""

    def __init__(self, table: str, fields: tuple):
        super().__init__(f"Duplicate key on {table} {fields}")
        self.table = table
        self.fields = fields
