"""
Agent turn state machine.

`advance(state, event)` is pure and synchronous: it never performs I/O and
never mutates its input. The async driver in agent_loop.py performs the
effects each phase calls for (planning call, tool execution) and feeds the
outcome back in as an event.

    PLANNING --PlanReady(no calls)--> ANSWERING --AnswerFinalized--> DONE(answered)
    PLANNING --PlanReady(calls)-----> TOOL_EXECUTING
    TOOL_EXECUTING --ToolsFinished--> PLANNING, or DONE(truncated) once step_index == max_steps
    any live phase --Cancelled------> DONE(cancelled)
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Literal

from models.chat import TokenUsage
from models.stream import ToolCall, TurnOutcome

StepAction = Literal["search", "scrape", "answer"]

# Tool name -> step action recorded in the transcript; calls to other names are not recorded
TOOL_ACTIONS: dict[str, StepAction] = {
    "searchWeb": "search",
    "scrapePages": "scrape",
}


class Phase(str, Enum):
    PLANNING = "planning"
    TOOL_EXECUTING = "tool_executing"
    ANSWERING = "answering"
    DONE = "done"


@dataclass(frozen=True)
class AgentStep:
    step_index: int
    action: StepAction
    input: Any = None
    output: Any = None


@dataclass(frozen=True)
class LoopState:
    max_steps: int
    phase: Phase = Phase.PLANNING
    step_index: int = 0
    pending_calls: tuple[ToolCall, ...] = ()
    step_texts: tuple[str, ...] = ()
    steps: tuple[AgentStep, ...] = ()
    usage: TokenUsage = field(default_factory=TokenUsage)
    outcome: TurnOutcome | None = None

    def __post_init__(self):
        if self.max_steps < 1:
            raise ValueError("max_steps must be at least 1")

    @property
    def is_done(self) -> bool:
        return self.phase is Phase.DONE

    @property
    def final_text(self) -> str:
        """
        Answer text surfaced to the caller.

        An answered turn returns the last planning step's text. A truncated or
        cancelled turn returns whatever text the model produced along the way.
        """
        if self.outcome == "answered":
            return self.step_texts[-1] if self.step_texts else ""
        return "\n\n".join(t for t in self.step_texts if t)


@dataclass(frozen=True)
class PlanReady:
    text: str
    tool_calls: tuple[ToolCall, ...] = ()
    usage: TokenUsage = field(default_factory=TokenUsage)


@dataclass(frozen=True)
class ToolsFinished:
    results: tuple[tuple[ToolCall, Any], ...]


@dataclass(frozen=True)
class AnswerFinalized:
    pass


@dataclass(frozen=True)
class Cancelled:
    reason: str = "cancelled"


Event = PlanReady | ToolsFinished | AnswerFinalized | Cancelled


class InvalidTransition(ValueError):
    def __init__(self, phase: Phase, event: Event):
        super().__init__(f"No transition from {phase.value} on {type(event).__name__}")
        self.phase = phase
        self.event = event


def advance(state: LoopState, event: Event) -> LoopState:
    """Return the state after `event`. Raises InvalidTransition for events the phase does not accept."""
    if state.phase is Phase.DONE:
        raise InvalidTransition(state.phase, event)

    if isinstance(event, Cancelled):
        return replace(state, phase=Phase.DONE, pending_calls=(), outcome="cancelled")

    if state.phase is Phase.PLANNING and isinstance(event, PlanReady):
        planned = replace(
            state,
            step_texts=state.step_texts + (event.text,),
            usage=state.usage + event.usage,
        )
        if not event.tool_calls:
            return replace(planned, phase=Phase.ANSWERING)
        return replace(planned, phase=Phase.TOOL_EXECUTING, pending_calls=tuple(event.tool_calls))

    if state.phase is Phase.TOOL_EXECUTING and isinstance(event, ToolsFinished):
        recorded = tuple(
            AgentStep(
                step_index=state.step_index,
                action=TOOL_ACTIONS[call.name],
                input=call.arguments,
                output=result,
            )
            for call, result in event.results
            if call.name in TOOL_ACTIONS
        )
        next_index = state.step_index + 1
        next_state = replace(
            state,
            step_index=next_index,
            pending_calls=(),
            steps=state.steps + recorded,
        )
        if next_index >= state.max_steps:
            return replace(next_state, phase=Phase.DONE, outcome="truncated")
        return replace(next_state, phase=Phase.PLANNING)

    if state.phase is Phase.ANSWERING and isinstance(event, AnswerFinalized):
        answer = AgentStep(
            step_index=state.step_index,
            action="answer",
            input=None,
            output=state.step_texts[-1] if state.step_texts else "",
        )
        return replace(state, phase=Phase.DONE, steps=state.steps + (answer,), outcome="answered")

    raise InvalidTransition(state.phase, event)
