"""Shared pytest fixtures for the coach server test suite.

These fixtures provide:
* A scripted chat model that answers completions by prompt marker and
  streams a configurable token list
* An ``LLMClient`` over that model with retries that never sleep
* In-memory store, cache and settings for isolated tests
* A fully wired ``ServiceContainer`` plus a FastAPI ``TestClient``
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, AIMessageChunk, BaseMessage
from langchain_core.outputs import ChatGeneration, ChatGenerationChunk, ChatResult
from pydantic import Field

from application.api.api_server import create_app
from application.container import ServiceContainer
from domain.context.memory.cache_memory_store import CacheMemoryStore
from domain.models.coach_spec import default_coach_spec
from domain.models.turn import ContextPacket
from domain.models.records import User
from domain.streaming.streaming_handler import StreamingHandler
from infrastructure.config.settings import Settings
from infrastructure.llm.llm_client import LLMClient, RetryPolicy
from infrastructure.security.jwt_validator import issue_dev_token
from infrastructure.storage.memory_document_store import InMemoryDocumentStore

TEST_SECRET = "test-shared-secret-with-at-least-32-bytes"

ROUTER_MARKER = "Classify the user's intent"
EXTRACTION_MARKER = "Extract structured data"
NEXT_ACTIONS_MARKER = "Extract next actions"
SUMMARY_MARKER = "Summarize this coaching session"
COMMITMENTS_MARKER = "Extract specific commitments"
MEMORY_SUMMARY_MARKER = "Update this user's memory summary"


class ScriptedChatModel(BaseChatModel):
    """LangChain chat model for deterministic unit tests.

    ``ainvoke`` answers with the queue registered for the first marker found
    in the prompt. The last queued item repeats; an exception item is raised.
    ``astream`` yields ``stream_tokens`` and can fail after a given count.
    """

    queued: Dict[str, List[Any]] = Field(default_factory=dict)
    calls: List[str] = Field(default_factory=list)
    stream_prompts: List[str] = Field(default_factory=list)
    stream_tokens: List[str] = Field(default_factory=lambda: ["Hello", " there"])
    stream_error: Optional[Any] = None
    stream_error_after: int = 0
    stream_delay: float = 0.0

    @property
    def _llm_type(self) -> str:
        return "scripted"

    def queue(self, marker: str, *responses: Any) -> None:
        self.queued[marker] = list(responses)

    def fail_stream(self, error: BaseException, after: int = 0) -> None:
        self.stream_error = error
        self.stream_error_after = after

    def calls_for(self, marker: str) -> List[str]:
        return [prompt for prompt in self.calls if marker in prompt]

    def _generate(self, messages: List[BaseMessage], stop: Optional[List[str]] = None,
                  run_manager: Any = None, **kwargs: Any) -> ChatResult:
        raise NotImplementedError("ScriptedChatModel is async only")

    async def _agenerate(self, messages: List[BaseMessage], stop: Optional[List[str]] = None,
                         run_manager: Any = None, **kwargs: Any) -> ChatResult:
        prompt = messages[-1].content
        self.calls.append(prompt)
        for marker, queued in self.queued.items():
            if marker in prompt and queued:
                item = queued.pop(0) if len(queued) > 1 else queued[0]
                if isinstance(item, BaseException):
                    raise item
                return ChatResult(generations=[ChatGeneration(message=AIMessage(content=item))])
        raise AssertionError(f"ScriptedChatModel received an unexpected prompt: {prompt[:60]!r}")

    async def _astream(self, messages: List[BaseMessage], stop: Optional[List[str]] = None,
                       run_manager: Any = None, **kwargs: Any) -> AsyncIterator[ChatGenerationChunk]:
        self.stream_prompts.append(messages[-1].content)
        for index, token in enumerate(self.stream_tokens):
            if self.stream_error is not None and index == self.stream_error_after:
                raise self.stream_error
            if self.stream_delay:
                await asyncio.sleep(self.stream_delay)
            yield ChatGenerationChunk(message=AIMessageChunk(content=token))
        if self.stream_error is not None and self.stream_error_after >= len(self.stream_tokens):
            raise self.stream_error


async def no_sleep(_seconds: float) -> None:
    return None


def parse_sse(body: str) -> List[Dict[str, Any]]:
    """Split an SSE body into ``{"event": ..., "data": ...}`` frames, skipping comments"""

    import json

    frames = []
    for block in body.strip().split("\n\n"):
        lines = [line for line in block.splitlines() if line and not line.startswith(":")]
        if not lines:
            continue
        event = next(line[len("event: "):] for line in lines if line.startswith("event: "))
        data = "\n".join(line[len("data: "):] for line in lines if line.startswith("data: "))
        frames.append({"event": event, "data": json.loads(data)})
    return frames


# ---------------------------------------------------------------------------
# Provider fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def model() -> ScriptedChatModel:
    """Scripted model with harmless defaults for the detached memory calls"""
    scripted = ScriptedChatModel()
    scripted.queue(SUMMARY_MARKER, "Discussed the week ahead.")
    scripted.queue(COMMITMENTS_MARKER, "[]")
    return scripted


@pytest.fixture
def llm(model: ScriptedChatModel) -> LLMClient:
    return LLMClient(model, RetryPolicy(max_retries=2, initial_backoff=0.01, max_backoff=0.05), sleep=no_sleep)


# ---------------------------------------------------------------------------
# Storage fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def cache() -> CacheMemoryStore:
    return CacheMemoryStore(default_ttl=60)


@pytest.fixture
def handler() -> StreamingHandler:
    return StreamingHandler("sess_1")


@pytest.fixture
def context_packet() -> ContextPacket:
    user = User(uid="user_1")
    user.context_vault.values = ["focus", "health"]
    user.context_vault.goals = ["ship the beta"]
    return ContextPacket(user=user, coach_spec=default_coach_spec())


# ---------------------------------------------------------------------------
# Application fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(
        environment="test",
        log_format="console",
        auth_mode="shared_secret",
        auth_shared_secret=TEST_SECRET,
        stream_keepalive_sec=5,
        stream_timeout_sec=30,
    )


@pytest.fixture
def container(settings: Settings, llm: LLMClient, store: InMemoryDocumentStore) -> ServiceContainer:
    return ServiceContainer.build(settings, llm=llm, store=store)


@pytest.fixture
def client(container: ServiceContainer):
    with TestClient(create_app(container)) as test_client:
        yield test_client


@pytest.fixture
def auth_headers():
    """Factory producing bearer headers for a uid"""

    def _factory(uid: str = "user_1") -> Dict[str, str]:
        return {"Authorization": f"Bearer {issue_dev_token(uid, TEST_SECRET)}"}

    return _factory
