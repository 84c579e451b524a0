"""LLM client utilities for request classification and the ERP agents.

This module provides:
- LLMClient: Wrapper around LiteLLM with retry logic, fallback model support
  and token tracking per run
- MockLLMClient: Scripted client for tests
- Message formatting helpers for tool-calling conversations
"""

import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

import structlog
from litellm import ModelResponse, acompletion
from litellm.exceptions import (
    AuthenticationError,
    BadRequestError,
    RateLimitError,
    ServiceUnavailableError,
    Timeout,
)

from config import settings
from errors import TransportError
from models.schemas import LLMMetrics

if TYPE_CHECKING:
    from metrics import MetricsCollector

logger = structlog.get_logger()


def normalize_tool_args(raw_args: Any) -> dict[str, Any]:
    """Normalize raw tool-call arguments into a dictionary.

    Models occasionally emit malformed tool arguments (JSON arrays, primitives,
    or partially valid strings). This helper guarantees downstream handlers
    always receive a dict-like payload.
    """
    if isinstance(raw_args, dict):
        return raw_args

    if isinstance(raw_args, str):
        try:
            parsed = json.loads(raw_args)
        except json.JSONDecodeError:
            return {"raw": raw_args}
        return parsed if isinstance(parsed, dict) else {"value": parsed}

    if raw_args is None:
        return {}

    return {"value": raw_args}


@dataclass
class ToolCallData:
    """Parsed tool call from an LLM response.

    Attributes:
        id: Unique identifier for this tool call
        name: Name of the tool to call
        args: Arguments to pass to the tool
    """

    id: str
    name: str
    args: dict[str, Any]


@dataclass
class LLMResponse:
    """Structured response from an LLM call.

    Attributes:
        content: The text content of the response
        tool_calls: List of tool calls if the model requested tools
        finish_reason: Why the model stopped (stop, tool_calls, length, etc.)
        metrics: Token usage and latency metrics
        raw_response: The original ModelResponse from LiteLLM
    """

    content: str
    tool_calls: list[ToolCallData]
    finish_reason: str
    metrics: LLMMetrics
    raw_response: ModelResponse | None = field(default=None, repr=False)


class LLMClient:
    """Wrapper around LiteLLM with retry logic, fallback, and metrics.

    The LLMClient provides:
    - Multi-provider support via LiteLLM
    - Automatic retry on transient failures with exponential backoff
    - Fallback model support when the primary model fails after retries
    - Token counting and latency tracking

    Every failure that reaches the caller is raised as ``TransportError``:
    from the caller's point of view the model is just another remote system.

    Attributes:
        default_model: Default model to use if not specified
        fallback_model: Optional fallback model if primary fails after retries
        retry_attempts: Number of retry attempts for failed calls
        retry_delay: Delay between retry attempts in seconds
    """

    def __init__(
        self,
        default_model: str | None = None,
        fallback_model: str | None = None,
        retry_attempts: int | None = None,
        retry_delay: float = 1.0,
        metrics_collector: Optional["MetricsCollector"] = None,
    ) -> None:
        """Initialize the LLM client.

        Args:
            default_model: Model to use if not specified in calls
            fallback_model: Model to try if primary fails
            retry_attempts: Number of retries (defaults to config llm_max_retries)
            retry_delay: Base seconds between retries (exponential backoff applied)
            metrics_collector: Optional MetricsCollector for run-level token tracking
        """
        self.default_model = default_model or settings.agent_model
        self.fallback_model = fallback_model
        self.retry_attempts = (
            retry_attempts if retry_attempts is not None
            else settings.llm_max_retries
        )
        self.retry_delay = retry_delay
        self.metrics_collector = metrics_collector

    async def call(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        run_id: str | None = None,
    ) -> LLMResponse:
        """Make an LLM call with retry logic, fallback, and metrics.

        Retries on: RateLimitError (429), ServiceUnavailableError (500/502/503),
        Timeout errors.
        Does NOT retry on: AuthenticationError (401/403), BadRequestError (400).

        Args:
            messages: List of message dicts with 'role' and 'content'
            tools: Optional list of tool definitions
            model: Model to use (defaults to self.default_model)
            temperature: Sampling temperature (0.0-2.0)
            max_tokens: Maximum tokens in response
            run_id: Optional run id the token usage is attributed to

        Returns:
            LLMResponse with content, tool calls, and metrics

        Raises:
            TransportError: If the call failed and could not be recovered.
        """
        model = model or self.default_model
        start_time = time.time()

        last_exception: Exception | None = None
        retry_count = 0

        for attempt in range(self.retry_attempts + 1):
            try:
                response = await self._make_request(
                    messages=messages,
                    tools=tools,
                    model=model,
                    temperature=temperature,
                    max_tokens=max_tokens,
                )
                llm_response = self._parse_response(
                    response, model, int((time.time() - start_time) * 1000)
                )
                self._record(llm_response, run_id)

                logger.info(
                    "llm_call_complete",
                    model=model,
                    input_tokens=llm_response.metrics.input_tokens,
                    output_tokens=llm_response.metrics.output_tokens,
                    latency_ms=llm_response.metrics.latency_ms,
                    tool_calls=len(llm_response.tool_calls),
                    attempt=attempt + 1,
                )
                return llm_response

            except (RateLimitError, ServiceUnavailableError, Timeout) as e:
                last_exception = e
                retry_count = attempt + 1
                if attempt < self.retry_attempts:
                    delay = min(self.retry_delay * (2 ** attempt), 4.0)  # Cap backoff at 4s
                    logger.warning(
                        "llm_call_retry",
                        model=model,
                        attempt=attempt + 1,
                        max_retries=self.retry_attempts,
                        error_type=type(e).__name__,
                        error=str(e),
                        retry_delay=delay,
                    )
                    await self._async_sleep(delay)
                else:
                    logger.error(
                        "llm_call_failed_all_retries",
                        model=model,
                        attempts=self.retry_attempts + 1,
                        error_type=type(e).__name__,
                        error=str(e),
                    )

            except (AuthenticationError, BadRequestError) as e:
                logger.error(
                    "llm_call_failed_no_retry",
                    model=model,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                raise TransportError(f"LLM call to {model} failed: {e}") from e

        if self.fallback_model and self.fallback_model != model:
            logger.warning(
                "llm_fallback_attempt",
                primary_model=model,
                fallback_model=self.fallback_model,
                primary_retries=retry_count,
                primary_error=str(last_exception),
            )
            try:
                response = await self._make_request(
                    messages=messages,
                    tools=tools,
                    model=self.fallback_model,
                    temperature=temperature,
                    max_tokens=max_tokens,
                )
                llm_response = self._parse_response(
                    response, self.fallback_model, int((time.time() - start_time) * 1000)
                )
                self._record(llm_response, run_id)
                logger.info(
                    "llm_fallback_success",
                    fallback_model=self.fallback_model,
                    input_tokens=llm_response.metrics.input_tokens,
                    output_tokens=llm_response.metrics.output_tokens,
                )
                return llm_response
            except Exception as fallback_error:
                logger.error(
                    "llm_fallback_failed",
                    fallback_model=self.fallback_model,
                    error_type=type(fallback_error).__name__,
                    error=str(fallback_error),
                )
                last_exception = last_exception or fallback_error

        raise TransportError(
            f"LLM call to {model} failed after {retry_count} attempt(s): {last_exception}"
        ) from last_exception

    def _record(self, llm_response: LLMResponse, run_id: str | None) -> None:
        if self.metrics_collector and run_id:
            self.metrics_collector.record_llm_call(
                run_id,
                prompt_tokens=llm_response.metrics.input_tokens,
                completion_tokens=llm_response.metrics.output_tokens,
            )

    async def _make_request(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
        model: str,
        temperature: float,
        max_tokens: int | None,
    ) -> ModelResponse:
        """Make the actual LiteLLM request."""
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
        }

        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"

        if max_tokens:
            kwargs["max_tokens"] = max_tokens

        kwargs["timeout"] = settings.llm_request_timeout_seconds

        return await acompletion(**kwargs)

    def _parse_response(
        self,
        response: ModelResponse,
        model: str,
        latency_ms: int,
    ) -> LLMResponse:
        """Parse the LiteLLM response into our structured format."""
        choice = response.choices[0]
        message = choice.message

        tool_calls: list[ToolCallData] = []
        if message.tool_calls:
            for tc in message.tool_calls:
                tool_calls.append(
                    ToolCallData(
                        id=tc.id,
                        name=tc.function.name,
                        args=normalize_tool_args(tc.function.arguments),
                    )
                )

        usage = response.usage
        metrics = LLMMetrics(
            model=model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            latency_ms=latency_ms,
        )

        return LLMResponse(
            content=message.content or "",
            tool_calls=tool_calls,
            finish_reason=choice.finish_reason or "unknown",
            metrics=metrics,
            raw_response=response,
        )

    async def _async_sleep(self, seconds: float) -> None:
        """Async sleep for retry delay. Extracted for easier mocking."""
        await asyncio.sleep(seconds)


def format_tool_result_for_llm(
    tool_call_id: str,
    result: str,
) -> dict[str, Any]:
    """Format a tool result as a message for the LLM.

    Args:
        tool_call_id: The ID of the tool call this result corresponds to
        result: The string result from the handler

    Returns:
        A message dict in the format expected by LLMs
    """
    return {
        "role": "tool",
        "tool_call_id": tool_call_id,
        "content": result,
    }


def format_assistant_message_with_tools(
    content: str,
    tool_calls: list[ToolCallData],
) -> dict[str, Any]:
    """Format an assistant message that includes tool calls."""
    message: dict[str, Any] = {
        "role": "assistant",
        "content": content,
    }

    if tool_calls:
        message["tool_calls"] = [
            {
                "id": tc.id,
                "type": "function",
                "function": {
                    "name": tc.name,
                    "arguments": json.dumps(tc.args),
                },
            }
            for tc in tool_calls
        ]

    return message


def count_tokens_estimate(text: str) -> int:
    """Estimate token count using the ~4 characters per token rule of thumb."""
    return len(text) // 4


class MockLLMClient(LLMClient):
    """Mock LLM client for testing without API calls.

    Usage:
        >>> client = MockLLMClient(responses=[make_response("INVENTORY")])
        >>> response = await client.call(messages=[...])
    """

    def __init__(
        self,
        responses: list[LLMResponse] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.responses = list(responses) if responses else []
        self.call_history: list[dict[str, Any]] = []
        self._response_index = 0

    async def call(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        run_id: str | None = None,
    ) -> LLMResponse:
        """Return the next predefined response, recording the call.

        Raises:
            IndexError: If no more responses available
        """
        self.call_history.append({
            "messages": [dict(m) for m in messages],
            "tools": tools,
            "model": model or self.default_model,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })

        if self._response_index >= len(self.responses):
            raise IndexError("No more mock responses available")

        response = self.responses[self._response_index]
        self._response_index += 1
        self._record(response, run_id)

        logger.debug(
            "mock_llm_call",
            response_index=self._response_index - 1,
            content_preview=response.content[:50] if response.content else "",
            tool_calls=len(response.tool_calls),
        )
        return response

    def reset(self) -> None:
        """Reset the mock to start returning responses from the beginning."""
        self._response_index = 0
        self.call_history.clear()


def make_response(
    content: str = "",
    tool_calls: list[ToolCallData] | None = None,
    model: str = "mock",
) -> LLMResponse:
    """Build an LLMResponse by hand (mock client scripts, keyword classifier)."""
    return LLMResponse(
        content=content,
        tool_calls=tool_calls or [],
        finish_reason="tool_calls" if tool_calls else "stop",
        metrics=LLMMetrics(
            model=model,
            input_tokens=0,
            output_tokens=count_tokens_estimate(content),
            latency_ms=0,
        ),
    )
