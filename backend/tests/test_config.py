import sys
import os
import importlib

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import config


def test_game_rules_read_from_environment(monkeypatch):
    monkeypatch.setenv("ELIMINATION_PENALTY", "3")
    monkeypatch.setenv("MIN_POLL_TIME_LIMIT", "30")
    monkeypatch.setenv("DEFAULT_QUESTION_POINTS", "25")
    monkeypatch.setenv("MAX_WS_MESSAGE_SIZE", "1024")
    try:
        importlib.reload(config)
        assert config.ELIMINATION_PENALTY == 3
        assert config.MIN_POLL_TIME_LIMIT == 30
        assert config.DEFAULT_QUESTION_POINTS == 25
        assert config.MAX_WS_MESSAGE_SIZE == 1024
    finally:
        monkeypatch.undo()
        importlib.reload(config)
