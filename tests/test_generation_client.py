import asyncio
from decimal import Decimal

import openai
import pytest

from casegen.core.exceptions import GenerationError, TerminalProviderError
from casegen.models.schemas import GenerationPayload
from casegen.services.generation_client import GenerationClient, extract_token_usage
from tests.conftest import completion, connection_error, status_error


def make_payload(model="gpt-4o-mini") -> GenerationPayload:
    return GenerationPayload(
        model=model,
        messages=[{"role": "system", "content": "sys"}, {"role": "user", "content": "issue"}],
        max_completion_tokens=8000,
        temperature=0.7,
    )


@pytest.mark.asyncio
async def test_first_attempt_success(generation_client, fake_openai, sleeps):
    fake_openai.completions.queue = [completion("### Test Case 1: Works", 1000, 500)]

    result = await generation_client.generate(make_payload())

    assert result.content == "### Test Case 1: Works"
    assert result.model == "gpt-4o-mini"
    assert result.token_usage.prompt_tokens == 1000
    assert result.token_usage.completion_tokens == 500
    assert result.token_usage.total_tokens == 1500
    assert result.cost == Decimal("0.00045")
    assert sleeps.delays == []
    assert len(fake_openai.completions.calls) == 1


@pytest.mark.asyncio
async def test_request_carries_payload_fields(generation_client, fake_openai):
    await generation_client.generate(make_payload("gpt-4o"))

    call = fake_openai.completions.calls[0]
    assert call["model"] == "gpt-4o"
    assert call["max_completion_tokens"] == 8000
    assert call["temperature"] == 0.7
    assert call["messages"][1]["content"] == "issue"


@pytest.mark.asyncio
async def test_transient_errors_are_retried_with_exponential_backoff(generation_client, fake_openai, sleeps):
    fake_openai.completions.queue = [
        connection_error(),
        status_error(openai.RateLimitError, 429),
        status_error(openai.InternalServerError, 500),
        completion("### Test Case 1: Fourth time lucky"),
    ]

    result = await generation_client.generate(make_payload())

    assert result.content == "### Test Case 1: Fourth time lucky"
    assert sleeps.delays == [2.0, 4.0, 8.0]
    assert len(fake_openai.completions.calls) == 4


@pytest.mark.asyncio
async def test_gives_up_after_four_attempts(generation_client, fake_openai, sleeps):
    fake_openai.completions.queue = [connection_error() for _ in range(4)]

    with pytest.raises(GenerationError) as exc_info:
        await generation_client.generate(make_payload())

    assert exc_info.value.attempts == 4
    assert isinstance(exc_info.value.last_error, openai.APIConnectionError)
    assert sleeps.delays == [2.0, 4.0, 8.0]
    assert len(fake_openai.completions.calls) == 4


@pytest.mark.asyncio
async def test_empty_completion_is_retried(generation_client, fake_openai, sleeps):
    fake_openai.completions.queue = [completion(""), completion(None), completion("### Test Case 1: Finally")]

    result = await generation_client.generate(make_payload())

    assert result.content == "### Test Case 1: Finally"
    assert sleeps.delays == [2.0, 4.0]


@pytest.mark.asyncio
async def test_authentication_error_fails_without_retry(generation_client, fake_openai, sleeps):
    fake_openai.completions.queue = [status_error(openai.AuthenticationError, 401, "bad key")]

    with pytest.raises(GenerationError) as exc_info:
        await generation_client.generate(make_payload())

    assert exc_info.value.attempts == 1
    assert sleeps.delays == []
    assert len(fake_openai.completions.calls) == 1


@pytest.mark.asyncio
async def test_terminal_provider_error_fails_without_retry(generation_client, fake_openai, sleeps):
    fake_openai.completions.queue = [TerminalProviderError("model not allowed")]

    with pytest.raises(GenerationError, match="model not allowed"):
        await generation_client.generate(make_payload())

    assert sleeps.delays == []


@pytest.mark.asyncio
async def test_retry_all_errors_retries_terminal_errors(fake_openai, sleeps):
    client = GenerationClient(client=fake_openai, max_retries=3, backoff_base_seconds=1.0,
                              retry_all_errors=True, sleep=sleeps)
    fake_openai.completions.queue = [status_error(openai.BadRequestError, 400), completion("### Test Case 1: ok")]

    result = await client.generate(make_payload())

    assert result.content == "### Test Case 1: ok"
    assert sleeps.delays == [2.0]


@pytest.mark.asyncio
async def test_backoff_base_scales_delays(fake_openai, sleeps):
    client = GenerationClient(client=fake_openai, max_retries=2, backoff_base_seconds=0.5,
                              retry_all_errors=False, sleep=sleeps)
    fake_openai.completions.queue = [connection_error() for _ in range(3)]

    with pytest.raises(GenerationError):
        await client.generate(make_payload())

    assert client.max_attempts == 3
    assert sleeps.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_cancellation_stops_retries(fake_openai):
    started = asyncio.Event()

    async def blocking_sleep(seconds):
        started.set()
        await asyncio.sleep(3600)

    client = GenerationClient(client=fake_openai, max_retries=3, backoff_base_seconds=1.0,
                              retry_all_errors=False, sleep=blocking_sleep)
    fake_openai.completions.queue = [connection_error() for _ in range(4)]

    task = asyncio.ensure_future(client.generate(make_payload()))
    await started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert len(fake_openai.completions.calls) == 1


def test_missing_usage_reads_as_zero():
    class NoUsage:
        usage = None

    usage = extract_token_usage(NoUsage())
    assert (usage.prompt_tokens, usage.completion_tokens, usage.total_tokens) == (0, 0, 0)
