from collections import Counter
from datetime import datetime
from typing import Any

from models.chat import TokenUsage


class TurnTracker:
    """
    Running totals across agent turns in one CLI session.

    Counts tokens, planning steps and how each turn ended
    (answered, truncated or cancelled).
    """

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        self.usage = TokenUsage()
        self.turns = 0
        self.steps = 0
        self.outcomes: Counter[str] = Counter()

    def update(self, usage: TokenUsage, steps: int = 0, outcome: str | None = None) -> None:
        """Add one finished turn."""
        self.turns += 1
        self.usage = self.usage + usage
        self.steps += steps
        if outcome:
            self.outcomes[outcome] += 1

    def get_summary(self) -> dict[str, Any]:
        return {
            'turns': self.turns,
            'tool_steps': self.steps,
            **self.usage.to_dict(),
            'outcomes': dict(self.outcomes),
            'timestamp': datetime.now().isoformat(),
        }

    def format_summary(self) -> str:
        stats = self.get_summary()
        outcomes = ", ".join(f"{name}: {count}" for name, count in sorted(stats['outcomes'].items())) or "none"
        return (
            f"Turns: {stats['turns']} ({outcomes})\n"
            f"Tool steps: {stats['tool_steps']}\n"
            f"Prompt tokens: {stats['prompt_tokens']}\n"
            f"Completion tokens: {stats['completion_tokens']}\n"
            f"Total tokens: {stats['total_tokens']}"
        )
