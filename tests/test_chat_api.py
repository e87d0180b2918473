"""
HTTP contract of the chat API.

The agent, database and tracer are swapped through FastAPI dependency
overrides, so nothing here reaches a real model, search backend or disk.
"""

import json

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from db.chat_repository import upsert_chat
from db.engine import create_db_engine
from db.tables import init_db
from fakes import (
    FailingLLMClient,
    FakeLLMClient,
    RecordingTelemetry,
    ScriptedStep,
    html_response,
    search_call,
    serper_payload,
)
from models.chat import ChatMessage
from models.errors import BackendError, UpstreamError
from orchestrator.agent_loop import AgentLoop
from orchestrator.tools import ToolExecutor
from server.app import create_app
from server.dependencies import get_agent_loop, get_session_factory, get_tracer
from tools.web.bulk_fetcher import BulkFetcher
from tools.web.search_provider import SearchProvider, SerperBackend
from utils.api_key_utils import user_id_for_api_key
from utils.rate_limiter import RateLimitConfig, RateLimiter

API_KEY = "test-key-1"
HEADERS = {"X-API-Key": API_KEY}


async def _no_sleep(seconds):
    return None


class UnreachableStore:
    async def get(self, key):
        raise BackendError("redis unreachable")

    async def set(self, key, value, ttl_ms=None):
        raise BackendError("redis unreachable")

    async def set_if_absent(self, key, value, ttl_ms):
        raise BackendError("redis unreachable")

    async def incr(self, key, ttl_ms):
        raise BackendError("redis unreachable")


def make_tools(cache):
    def handler(request):
        if request.url.host == "google.serper.dev":
            return httpx.Response(200, json=serper_payload([("Deno 2", "https://deno.test/2", "Deno 2 is out")]))
        return html_response("Deno 2", "Deno 2 ships npm compatibility.")

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ToolExecutor(
        SearchProvider(SerperBackend("k"), cache, http_client=client),
        BulkFetcher(cache, http_client=client, respect_robots=False, sleep=_no_sleep),
        telemetry=RecordingTelemetry(),
    )


@pytest.fixture
def session_factory():
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield sessionmaker(bind=engine)
    engine.dispose()


@pytest.fixture
def tracer():
    return RecordingTelemetry()


@pytest.fixture
def agent(cache):
    llm = FakeLLMClient(
        [
            ScriptedStep(tool_calls=[search_call("deno 2")]),
            ScriptedStep(text="Deno 2 is out ([Deno 2](https://deno.test/2))."),
        ]
    )
    return AgentLoop(llm, make_tools(cache))


@pytest.fixture
def app(monkeypatch, agent, session_factory, tracer):
    monkeypatch.setenv("API_KEYS", "test-key-1,test-key-2")
    app = create_app()
    app.dependency_overrides[get_agent_loop] = lambda: agent
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_tracer] = lambda: tracer
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


def frames(response):
    return [json.loads(line) for line in response.text.splitlines() if line.strip()]


def chat_body(text="What is new in Deno 2?", **extra):
    return {"messages": [{"id": "m1", "role": "user", "content": text}], **extra}


def test_health_reports_database(client):
    r = client.get("/health")

    assert r.status_code == 200
    assert r.json()["status"] == "healthy"
    assert r.json()["checks"] == {"database": "ok"}
    assert "x-request-id" in r.headers


def test_missing_api_key_is_rejected(client):
    r = client.post("/v1/chat", json=chat_body())

    assert r.status_code == 401


def test_empty_messages_is_bad_request(client):
    r = client.post("/v1/chat", json={"messages": []}, headers=HEADERS)

    assert r.status_code == 400
    assert r.json()["detail"] == "No messages provided"


def test_invalid_step_budget_is_rejected(client):
    r = client.post("/v1/chat", json=chat_body(max_steps=0), headers=HEADERS)

    assert r.status_code == 422


def test_new_chat_streams_frames_and_is_persisted(client, tracer):
    r = client.post("/v1/chat", json=chat_body(), headers=HEADERS)

    assert r.status_code == 200
    assert r.headers["content-type"].startswith("application/x-ndjson")
    body = frames(r)
    chat_id = r.headers["x-chat-id"]

    assert body[0] == {"type": "new_chat_created", "chatId": chat_id}
    types = [f["type"] for f in body]
    assert types.index("tool-call") < types.index("tool-result") < types.index("text-delta")
    finish = body[-1]
    assert finish["type"] == "finish"
    assert finish["outcome"] == "answered"
    assert "[Deno 2](https://deno.test/2)" in finish["text"]
    assert tracer.names() == ["create-new-chat", "update-chat"]

    listed = client.get("/v1/chats", headers=HEADERS).json()["chats"]
    assert [c["id"] for c in listed] == [chat_id]
    assert listed[0]["title"] == "What is new in Deno 2?..."

    detail = client.get(f"/v1/chats/{chat_id}", headers=HEADERS).json()
    assert [m["role"] for m in detail["messages"]] == ["user", "assistant"]
    assistant_parts = detail["messages"][1]["parts"]
    assert assistant_parts[0]["type"] == "tool-invocation"
    assert assistant_parts[0]["toolInvocation"]["toolName"] == "searchWeb"


def test_existing_chat_is_continued_without_new_chat_frame(client, session_factory):
    db = session_factory()
    upsert_chat(db, user_id_for_api_key(API_KEY), "chat-1", "Earlier", [ChatMessage(role="user", content="hi")])
    db.commit()
    db.close()

    r = client.post("/v1/chat", json=chat_body(chat_id="chat-1"), headers=HEADERS)

    assert r.status_code == 200
    assert r.headers["x-chat-id"] == "chat-1"
    assert frames(r)[0]["type"] != "new_chat_created"


def test_foreign_chat_is_not_found(client, session_factory):
    db = session_factory()
    upsert_chat(db, user_id_for_api_key("test-key-2"), "chat-2", "Theirs", [ChatMessage(role="user", content="hi")])
    db.commit()
    db.close()

    r = client.post("/v1/chat", json=chat_body(chat_id="chat-2"), headers=HEADERS)
    assert r.status_code == 404

    r = client.get("/v1/chats/chat-2", headers=HEADERS)
    assert r.status_code == 404


def test_rate_limited_request_gets_429_with_retry_after(app, client, cache, store, clock):
    app.dependency_overrides[get_agent_loop] = lambda: AgentLoop(
        FakeLLMClient([ScriptedStep(text="ok")]),
        make_tools(cache),
        rate_limiter=RateLimiter(store, clock=clock, sleep=clock.sleep),
        rate_limit=RateLimitConfig(key="chat", limit=1, window_duration_ms=30_000, max_retries=0),
    )

    assert client.post("/v1/chat", json=chat_body(), headers=HEADERS).status_code == 200
    r = client.post("/v1/chat", json=chat_body(), headers=HEADERS)

    assert r.status_code == 429
    assert r.headers["retry-after"] == "30"


def test_foreign_chat_is_rejected_before_spending_rate_budget(app, client, cache, store, clock, session_factory):
    db = session_factory()
    upsert_chat(db, user_id_for_api_key("test-key-2"), "chat-2", "Theirs", [ChatMessage(role="user", content="hi")])
    db.commit()
    db.close()
    app.dependency_overrides[get_agent_loop] = lambda: AgentLoop(
        FakeLLMClient([ScriptedStep(text="ok")]),
        make_tools(cache),
        rate_limiter=RateLimiter(store, clock=clock, sleep=clock.sleep),
        rate_limit=RateLimitConfig(key="chat", limit=1, window_duration_ms=30_000, max_retries=0),
    )

    assert client.post("/v1/chat", json=chat_body(chat_id="chat-2"), headers=HEADERS).status_code == 404
    assert client.post("/v1/chat", json=chat_body(), headers=HEADERS).status_code == 200


def test_unreachable_rate_limit_store_is_503(app, client, cache):
    app.dependency_overrides[get_agent_loop] = lambda: AgentLoop(
        FakeLLMClient([ScriptedStep(text="ok")]),
        make_tools(cache),
        rate_limiter=RateLimiter(UnreachableStore()),
        rate_limit=RateLimitConfig(key="chat", limit=5, window_duration_ms=60_000),
    )

    r = client.post("/v1/chat", json=chat_body(), headers=HEADERS)

    assert r.status_code == 503


def test_model_failure_mid_stream_becomes_error_frame(app, client, cache):
    app.dependency_overrides[get_agent_loop] = lambda: AgentLoop(
        FailingLLMClient(UpstreamError("openai API error: 500")), make_tools(cache)
    )

    r = client.post("/v1/chat", json=chat_body(), headers=HEADERS)

    assert r.status_code == 200
    assert frames(r)[-1] == {"type": "error", "message": "Oops, an error occurred!"}


def test_chats_are_scoped_to_the_caller(client):
    client.post("/v1/chat", json=chat_body(), headers=HEADERS)

    r = client.get("/v1/chats", headers={"X-API-Key": "test-key-2"})

    assert r.status_code == 200
    assert r.json()["chats"] == []
