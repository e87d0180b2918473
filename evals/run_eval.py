#!/usr/bin/env python3
"""
Answer-quality evaluation for the research agent.

Runs each case through ask_deep_search and scores the answer. Needs real
provider credentials in .env; prints a per-case table and the mean score.

    python -m evals.run_eval
    python -m evals.run_eval --case 1 --max-steps 6
"""

import argparse
import asyncio
import json
import re
import time
from collections.abc import Callable
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

from models.chat import ChatMessage, MessagePart
from orchestrator.agent_loop import AgentLoop, ask_deep_search, create_agent_loop_from_env
from tools.web.factory import close_shared_store
from utils.logger import get_logger

logger = get_logger(__name__)

MARKDOWN_LINK = re.compile(r"\[[^\]]+\]\([^)]+\)")

EVAL_QUERIES = [
    "What is the latest version of TypeScript?",
    "What are the main features of Next.js 15?",
    "Compare React and Vue.js for building modern web applications",
    "Best practices for handling authentication in Next.js applications",
    "Explain the differences between REST and GraphQL APIs",
    "What are the key features of Tailwind CSS and how does it compare to other libraries",
]


@dataclass(frozen=True)
class Scorer:
    name: str
    description: str
    score: Callable[[str], float]


def contains_links(output: str) -> float:
    """1.0 when the answer contains at least one markdown link, else 0.0."""
    return 1.0 if MARKDOWN_LINK.search(output) else 0.0


SCORERS = [
    Scorer("Contains Links", "Checks if the output contains any markdown links.", contains_links),
]


@dataclass(frozen=True)
class EvalResult:
    case_id: str
    query: str
    output: str
    scores: dict[str, float]
    latency_ms: int


def build_cases() -> list[tuple[str, list[ChatMessage]]]:
    return [
        (str(i), [ChatMessage(id=str(i), role="user", content=q, parts=[MessagePart.text_part(q)])])
        for i, q in enumerate(EVAL_QUERIES, start=1)
    ]


async def run_case(agent: AgentLoop, case_id: str, messages: list[ChatMessage], max_steps: int | None) -> EvalResult:
    start = time.perf_counter()
    output = await ask_deep_search(agent, messages, max_steps)
    return EvalResult(
        case_id=case_id,
        query=messages[-1].text,
        output=output,
        scores={s.name: s.score(output) for s in SCORERS},
        latency_ms=int((time.perf_counter() - start) * 1000),
    )


async def run_eval(case: str | None, max_steps: int | None) -> list[EvalResult]:
    agent = create_agent_loop_from_env()
    results: list[EvalResult] = []
    try:
        for case_id, messages in build_cases():
            if case and case != case_id:
                continue
            result = await run_case(agent, case_id, messages, max_steps)
            logger.info(
                "Eval case complete",
                extra={"extra_fields": {"case_id": case_id, "scores": result.scores, "latency_ms": result.latency_ms}},
            )
            results.append(result)
    finally:
        await agent.llm.aclose()
        await close_shared_store()
    return results


def print_report(results: list[EvalResult]) -> None:
    print("\n=== Deep Search Eval ===")
    for r in results:
        scores = ", ".join(f"{name}: {value:.0f}" for name, value in r.scores.items())
        print(f"[{r.case_id}] {r.query[:60]:<60} {scores} ({r.latency_ms} ms)")
    for scorer in SCORERS:
        values = [r.scores[scorer.name] for r in results]
        mean = sum(values) / len(values) if values else 0.0
        print(f"\n{scorer.name}: {mean:.2f} mean over {len(values)} case(s)")


def main():
    parser = argparse.ArgumentParser(description="Evaluate DeepSearch answers")
    parser.add_argument("--case", help="Run a single case id (1-based)")
    parser.add_argument("--max-steps", type=int, default=None, help="Step budget per case")
    parser.add_argument("--json", action="store_true", help="Print results as JSON")
    args = parser.parse_args()

    results = asyncio.run(run_eval(args.case, args.max_steps))
    if args.json:
        print(json.dumps([r.__dict__ for r in results], indent=2))
    else:
        print_report(results)


if __name__ == "__main__":
    main()
