import asyncio
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

import openai
import structlog
from openai import AsyncOpenAI

from casegen.config.settings import settings
from casegen.core.exceptions import EmptyResponseError, GenerationError, TerminalProviderError
from casegen.models.schemas import GenerationPayload, GenerationResult, TokenUsage
from casegen.services.pricing import calculate_cost

logger = structlog.get_logger()

Sleep = Callable[[float], Awaitable[None]]

# Errors a retry cannot fix: bad credentials, forbidden model, malformed request
TERMINAL_ERRORS: Tuple[Type[BaseException], ...] = (
    TerminalProviderError,
    openai.AuthenticationError,
    openai.PermissionDeniedError,
    openai.BadRequestError,
    openai.NotFoundError,
    openai.UnprocessableEntityError,
)


def extract_token_usage(response: Any) -> TokenUsage:
    usage = getattr(response, "usage", None)
    if usage is None:
        return TokenUsage()
    prompt_tokens = getattr(usage, "prompt_tokens", None) or 0
    completion_tokens = getattr(usage, "completion_tokens", None) or 0
    total_tokens = getattr(usage, "total_tokens", None) or (prompt_tokens + completion_tokens)
    return TokenUsage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=total_tokens,
    )


def extract_content(response: Any) -> str:
    choices = getattr(response, "choices", None) or []
    if not choices:
        return ""
    message = getattr(choices[0], "message", None)
    return (getattr(message, "content", None) or "").strip()


class GenerationClient:
    """Call the chat completions API with bounded retries and cost accounting.

    A call is attempted once and retried up to ``max_retries`` times.
    Before retry number ``n`` (counting attempts from 1) the client waits
    ``2**n * backoff_base_seconds``: 2s, 4s, 8s with the defaults.
    Empty completions are retried like transient failures. Terminal
    errors (see ``TERMINAL_ERRORS``) fail immediately unless
    ``retry_all_errors`` is set.

    Waiting goes through ``sleep`` so only the calling task is suspended;
    cancelling that task stops the retries at the next await.
    """

    def __init__(
        self,
        client: Optional[Any] = None,
        max_retries: Optional[int] = None,
        backoff_base_seconds: Optional[float] = None,
        retry_all_errors: Optional[bool] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        if client is None:
            # The SDK's own retry loop is disabled; retries are counted here
            client = AsyncOpenAI(
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url,
                max_retries=0,
            )
        self.client = client
        self.max_retries = settings.generation_max_retries if max_retries is None else max_retries
        self.backoff_base_seconds = (
            settings.generation_backoff_base_seconds if backoff_base_seconds is None else backoff_base_seconds
        )
        self.retry_all_errors = (
            settings.generation_retry_all_errors if retry_all_errors is None else retry_all_errors
        )
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def backoff_seconds(self, attempt: int) -> float:
        return (2 ** attempt) * self.backoff_base_seconds

    def is_retryable(self, error: BaseException) -> bool:
        if self.retry_all_errors:
            return True
        return not isinstance(error, TERMINAL_ERRORS)

    async def _attempt(self, payload: GenerationPayload) -> GenerationResult:
        response = await self.client.chat.completions.create(**payload.to_openai_kwargs())
        content = extract_content(response)
        if not content:
            raise EmptyResponseError("Empty response from OpenAI")
        usage = extract_token_usage(response)
        cost = calculate_cost(payload.model, usage.prompt_tokens, usage.completion_tokens)
        return GenerationResult(content=content, token_usage=usage, cost=cost, model=payload.model)

    async def generate(self, payload: GenerationPayload) -> GenerationResult:
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_attempts + 1):
            logger.info("Calling OpenAI", attempt=attempt, max_attempts=self.max_attempts,
                        model=payload.model, images=payload.image_count)
            try:
                result = await self._attempt(payload)
            except Exception as e:
                last_error = e
                if not self.is_retryable(e):
                    logger.error("OpenAI request failed with non-retryable error",
                                 attempt=attempt, error_type=type(e).__name__, error=str(e))
                    raise GenerationError(str(e), attempts=attempt, last_error=e) from e
                if attempt >= self.max_attempts:
                    break
                wait = self.backoff_seconds(attempt)
                logger.warning("OpenAI API error, retrying", attempt=attempt, retry_in_seconds=wait,
                               error_type=type(e).__name__, error=str(e))
                await self._sleep(wait)
                continue

            logger.info("OpenAI generation succeeded", attempt=attempt, model=result.model,
                        total_tokens=result.token_usage.total_tokens, cost=str(result.cost))
            return result

        logger.error("OpenAI API failed after all attempts", attempts=self.max_attempts,
                     error_type=type(last_error).__name__, error=str(last_error))
        raise GenerationError(str(last_error), attempts=self.max_attempts, last_error=last_error) from last_error
