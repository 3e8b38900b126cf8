import pytest
from langchain_core.language_models import BaseChatModel, FakeListChatModel

from conftest import ROUTER_MARKER, no_sleep
from domain.errors import ProviderError
from infrastructure.llm.llm_client import LLMClient, RetryPolicy, content_to_text, is_retryable


class FlakyModel:
    """Fails ``failures`` times with ``error`` before answering"""

    def __init__(self, error, failures):
        self.error = error
        self.failures = failures
        self.calls = 0

    async def ainvoke(self, messages):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return FakeListChatModel(responses=["recovered"]).invoke(messages)


def recording_sleep(delays):
    async def _sleep(seconds):
        delays.append(seconds)
    return _sleep


async def test_complete_returns_model_text():
    client = LLMClient(FakeListChatModel(responses=["hello"]), sleep=no_sleep)

    assert await client.complete("Say hi") == "hello"


async def test_stream_yields_text_chunks():
    client = LLMClient(FakeListChatModel(responses=["abc"]), sleep=no_sleep)

    chunks = [chunk async for chunk in client.stream("Say abc")]

    assert "".join(chunks) == "abc"


async def test_transient_errors_back_off_exponentially():
    delays = []
    model = FlakyModel(ConnectionError("connection reset"), failures=3)
    client = LLMClient(model, RetryPolicy(max_retries=3, initial_backoff=1.0, max_backoff=3.0),
                       sleep=recording_sleep(delays))

    assert await client.complete("ping") == "recovered"
    assert model.calls == 4
    assert delays == [1.0, 2.0, 3.0]


async def test_default_policy_doubles_backoff_between_attempts():
    delays = []
    model = FlakyModel(ConnectionError("connection reset"), failures=3)
    client = LLMClient(model, sleep=recording_sleep(delays))

    assert await client.complete("ping") == "recovered"
    assert delays == [1.0, 2.0, 4.0]


async def test_retries_exhausted_raise_retryable_provider_error():
    model = FlakyModel(TimeoutError("deadline exceeded"), failures=10)
    client = LLMClient(model, RetryPolicy(max_retries=2), sleep=no_sleep)

    with pytest.raises(ProviderError) as exc_info:
        await client.complete("ping")

    assert exc_info.value.retryable is True
    assert model.calls == 3


async def test_non_retryable_error_fails_immediately():
    model = FlakyModel(ValueError("invalid api key"), failures=10)
    client = LLMClient(model, RetryPolicy(max_retries=3), sleep=no_sleep)

    with pytest.raises(ProviderError) as exc_info:
        await client.complete("ping")

    assert exc_info.value.retryable is False
    assert model.calls == 1


@pytest.mark.parametrize(
    "error, expected",
    [
        (ConnectionError("boom"), True),
        (RuntimeError("503 Service Unavailable"), True),
        (RuntimeError("429 Resource exhausted"), True),
        (ValueError("invalid argument"), False),
        (ProviderError("wrapped", retryable=False), False),
    ],
)
def test_is_retryable(error, expected):
    assert is_retryable(error) is expected


def test_content_to_text_flattens_parts():
    assert content_to_text(["a", {"type": "text", "text": "b"}, {"type": "image"}]) == "ab"
    assert content_to_text(None) == ""


async def test_scripted_model_answers_through_chat_model_interface(model, llm):
    model.queue(ROUTER_MARKER, '{"route": "quick_nudge"}')

    assert isinstance(model, BaseChatModel)
    assert await llm.complete(f"{ROUTER_MARKER} for: hi") == '{"route": "quick_nudge"}'
    assert [chunk async for chunk in llm.stream("anything")] == ["Hello", " there"]
