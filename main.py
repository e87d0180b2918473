import asyncio
import sys

from dotenv import load_dotenv

# Load environment variables first
load_dotenv()

from config.config import get_config
from models.chat import ChatMessage, MessagePart
from models.errors import DeepSearchError, RateLimitExceeded
from models.stream import DoneWithUsage, TextDelta, ToolEvent
from orchestrator.agent_loop import AgentLoop, create_agent_loop_from_env
from tools.web.factory import close_shared_store
from utils.turn_tracker import TurnTracker


def describe_tool_call(event: ToolEvent) -> str:
    if event.tool_name == "searchWeb":
        return f"searching: {event.args.get('query', '')}"
    if event.tool_name == "scrapePages":
        return f"reading {len(event.args.get('urls') or [])} page(s)"
    return f"calling {event.tool_name}"


async def run_turn(agent: AgentLoop, history: list[ChatMessage], turn_tracker: TurnTracker) -> DoneWithUsage | None:
    """Stream one turn to stdout and return its final frame."""
    done = None
    sys.stdout.write("\nAI: ")
    async for frame in agent.run_agent_turn(history):
        if isinstance(frame, TextDelta):
            sys.stdout.write(frame.text)
            sys.stdout.flush()
        elif isinstance(frame, ToolEvent) and frame.phase == "call":
            sys.stdout.write(f"\n\033[93m[{describe_tool_call(frame)}]\033[0m\n")
            sys.stdout.flush()
        elif isinstance(frame, DoneWithUsage):
            done = frame

    if done is not None:
        turn_tracker.update(done.usage, done.steps, done.outcome)
        if done.outcome == "truncated":
            print("\n[Stopped: step limit reached before a final answer]")
        print(f"\n[Steps: {done.steps} | Tokens used: {done.usage.total_tokens}]\n")
    return done


async def chat_loop() -> None:
    turn_tracker = TurnTracker()
    config = get_config()

    try:
        agent = create_agent_loop_from_env(config)
    except DeepSearchError as e:
        print(f"Error initializing agent: {e}")
        return

    history: list[ChatMessage] = []
    print(f"\n=== DeepSearch ({config.get_model_info()}) ===")
    print("Type 'exit' to quit, 'stats' to see token usage, 'new' for a fresh conversation, or 'help'\n")

    try:
        while True:
            try:
                user_input = (await asyncio.to_thread(input, "You: ")).strip()
            except (EOFError, KeyboardInterrupt):
                print("\nExiting...")
                break

            if not user_input:
                continue

            if user_input.lower() in ('exit', 'quit'):
                print("\nGoodbye!")
                break

            if user_input.lower() == 'stats':
                print("\n=== Token Usage ===")
                print(turn_tracker.format_summary())
                print(f"Last updated: {turn_tracker.get_summary()['timestamp']}\n")
                continue

            if user_input.lower() == 'new':
                history = []
                print("\nStarted a new conversation.\n")
                continue

            if user_input.lower() == 'help':
                print("\n=== Available Commands ===")
                print("help     - Show this help message")
                print("stats    - Show token usage statistics")
                print("new      - Forget the conversation so far")
                print("exit/quit - Exit the program\n")
                continue

            turn_history = history + [
                ChatMessage(role="user", content=user_input, parts=[MessagePart.text_part(user_input)])
            ]
            try:
                await agent.admit("cli")
                done = await run_turn(agent, turn_history, turn_tracker)
            except RateLimitExceeded as e:
                print(f"\nRate limited, try again in {max(1, e.reset_in_ms // 1000)}s\n")
                continue
            except DeepSearchError as e:
                print(f"\nError: {e}\n")
                continue

            if done is not None and done.outcome != "cancelled":
                history = done.transcript
    finally:
        await agent.llm.aclose()
        await close_shared_store()
        if turn_tracker.turns > 0:
            print("\n=== Final Token Usage ===")
            print(turn_tracker.format_summary())


def main():
    try:
        asyncio.run(chat_loop())
    except KeyboardInterrupt:
        print("\nExiting...")


if __name__ == "__main__":
    main()
