from models.chat import TokenUsage
from utils.turn_tracker import TurnTracker


def test_accumulates_usage_steps_and_outcomes():
    tracker = TurnTracker()

    tracker.update(TokenUsage(prompt_tokens=10, completion_tokens=5), steps=2, outcome="answered")
    tracker.update(TokenUsage(prompt_tokens=4, completion_tokens=1), steps=10, outcome="truncated")

    summary = tracker.get_summary()
    assert summary["turns"] == 2
    assert summary["tool_steps"] == 12
    assert summary["total_tokens"] == 20
    assert summary["outcomes"] == {"answered": 1, "truncated": 1}
    assert "Turns: 2 (answered: 1, truncated: 1)" in tracker.format_summary()


def test_reset_clears_totals():
    tracker = TurnTracker()
    tracker.update(TokenUsage(prompt_tokens=1), outcome="answered")

    tracker.reset()

    assert tracker.turns == 0
    assert tracker.usage.total_tokens == 0
    assert "none" in tracker.format_summary()
