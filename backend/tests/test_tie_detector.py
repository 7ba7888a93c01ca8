import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from models import Participant
from tie_detector import detect_tie


def board(*scores):
    return [Participant(name=f"P{i}", score=s) for i, s in enumerate(scores)]


class TestDetectTie:
    def test_two_way_tie_at_top(self):
        lb = board(50, 50, 30)
        group = detect_tie(lb)
        assert group is not None
        assert group.score == 50
        assert group.participant_ids == [lb[0].id, lb[1].id]

    def test_three_way_tie(self):
        group = detect_tie(board(20, 20, 20, 5))
        assert len(group.participants) == 3

    def test_clear_leader_is_not_a_tie(self):
        assert detect_tie(board(60, 50, 50)) is None

    def test_zero_scores_never_tie(self):
        assert detect_tie(board(0, 0, 0)) is None

    def test_single_participant(self):
        assert detect_tie(board(40)) is None

    def test_empty_leaderboard(self):
        assert detect_tie([]) is None
