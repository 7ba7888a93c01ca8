from typing import List, NamedTuple, Optional

from models import Participant


class TiedGroup(NamedTuple):
    participants: List[Participant]
    score: int

    @property
    def participant_ids(self) -> List[str]:
        return [p.id for p in self.participants]


def detect_tie(leaderboard: List[Participant]) -> Optional[TiedGroup]:
    """Return everyone sharing the top score, if at least two do and it is above zero.

    ``leaderboard`` must already be sorted by score, highest first.
    """
    if len(leaderboard) < 2:
        return None
    top = leaderboard[0].score
    if top <= 0:
        return None
    tied = [p for p in leaderboard if p.score == top]
    if len(tied) < 2:
        return None
    return TiedGroup(participants=tied, score=top)
