import pytest

from models.chat import TokenUsage
from models.stream import ToolCall
from orchestrator.state_machine import (
    AnswerFinalized,
    Cancelled,
    InvalidTransition,
    LoopState,
    Phase,
    PlanReady,
    ToolsFinished,
    advance,
)

SEARCH = ToolCall(id="c1", name="searchWeb", arguments={"query": "q"})
SCRAPE = ToolCall(id="c2", name="scrapePages", arguments={"urls": ["https://a.test"]})


def test_plan_without_tool_calls_moves_to_answering_then_done():
    state = advance(LoopState(max_steps=3), PlanReady(text="Final answer", usage=TokenUsage(3, 2)))
    assert state.phase is Phase.ANSWERING

    state = advance(state, AnswerFinalized())

    assert state.phase is Phase.DONE
    assert state.outcome == "answered"
    assert state.final_text == "Final answer"
    assert state.steps[-1].action == "answer"
    assert state.usage.total_tokens == 5


def test_tool_cycle_increments_step_index_and_records_steps():
    state = advance(LoopState(max_steps=3), PlanReady(text="", tool_calls=(SEARCH, SCRAPE)))
    assert state.phase is Phase.TOOL_EXECUTING
    assert state.pending_calls == (SEARCH, SCRAPE)

    state = advance(state, ToolsFinished(results=((SEARCH, ["r"]), (SCRAPE, {"results": []}))))

    assert state.phase is Phase.PLANNING
    assert state.step_index == 1
    assert state.pending_calls == ()
    assert [s.action for s in state.steps] == ["search", "scrape"]
    assert state.steps[0].output == ["r"]


def test_calls_to_unknown_tools_are_not_recorded_as_steps():
    lookup = ToolCall(id="c3", name="lookupStock", arguments={"ticker": "ACME"})
    state = advance(LoopState(max_steps=3), PlanReady(text="", tool_calls=(lookup, SEARCH)))

    state = advance(
        state,
        ToolsFinished(results=((lookup, {"error": "Unknown tool: lookupStock"}), (SEARCH, ["r"]))),
    )

    assert state.phase is Phase.PLANNING
    assert state.step_index == 1
    assert [(s.action, s.input) for s in state.steps] == [("search", {"query": "q"})]


def test_budget_exhaustion_truncates_with_partial_text():
    state = LoopState(max_steps=2)
    for text in ("Looking this up.", "Reading sources."):
        state = advance(state, PlanReady(text=text, tool_calls=(SEARCH,)))
        state = advance(state, ToolsFinished(results=((SEARCH, []),)))

    assert state.phase is Phase.DONE
    assert state.outcome == "truncated"
    assert state.step_index == 2
    assert state.final_text == "Looking this up.\n\nReading sources."


def test_cancel_from_any_live_phase():
    planning = LoopState(max_steps=2)
    executing = advance(planning, PlanReady(text="", tool_calls=(SEARCH,)))
    answering = advance(planning, PlanReady(text="Answer"))

    for state in (planning, executing, answering):
        done = advance(state, Cancelled())
        assert done.phase is Phase.DONE
        assert done.outcome == "cancelled"


def test_done_accepts_no_events():
    done = advance(LoopState(max_steps=1), Cancelled())

    with pytest.raises(InvalidTransition):
        advance(done, PlanReady(text="late"))


def test_events_out_of_phase_are_rejected():
    with pytest.raises(InvalidTransition):
        advance(LoopState(max_steps=1), ToolsFinished(results=()))
    with pytest.raises(InvalidTransition):
        advance(LoopState(max_steps=1), AnswerFinalized())


def test_advance_does_not_mutate_input():
    state = LoopState(max_steps=2)
    advance(state, PlanReady(text="x", tool_calls=(SEARCH,)))

    assert state.phase is Phase.PLANNING
    assert state.step_texts == ()


def test_budget_must_be_positive():
    with pytest.raises(ValueError):
        LoopState(max_steps=0)
