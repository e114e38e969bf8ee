"""GoalPilot Oracle Gateway: rate-governed access to the language model.

Every call to the model goes through ``OracleGateway.complete``. The gateway
owns a rolling call window (``RateLimitState``) and a two-tier retry policy:

- Rate/quota failures retry on a fixed escalating delay schedule and
  permanently lower the per-window ceiling of this gateway.
- Any other failure retries with capped exponential backoff.

After the configured number of attempts the caller receives
``OracleFatalError`` carrying the last underlying error. The gateway knows
nothing about tasks, goals or pages; the transport and clock are injected.
"""

from __future__ import annotations

import asyncio
import base64
import dataclasses
import logging
import time
from typing import TYPE_CHECKING, Any, Protocol, Sequence

from goalpilot import models
from goalpilot.engine.cost_tracker import BudgetExceededError

if TYPE_CHECKING:
    from goalpilot.engine.cost_tracker import CostTracker

logger = logging.getLogger("goalpilot.engine.oracle_gateway")

# Client errors that no amount of retrying will fix
_NON_RETRYABLE_STATUS = frozenset({400, 401, 403, 404})

_RATE_LIMIT_PHRASES = ("rate limit", "rate_limit", "rate-limit", "ratelimit", "too many requests")


class OracleError(Exception):
    """Base class for oracle channel failures."""

    pass


class OracleRateLimited(OracleError):
    """The oracle rejected a call for rate or quota reasons."""

    pass


class OracleTransientError(OracleError):
    """A retryable oracle failure that is not rate related."""

    pass


class OracleFatalError(OracleError):
    """Retries are exhausted or the failure cannot be retried."""

    def __init__(self, message: str, last_error: BaseException | None = None) -> None:
        super().__init__(message)
        self.last_error = last_error


@dataclasses.dataclass(frozen=True)
class Attachment:
    """An image passed alongside a prompt."""

    data: bytes
    media_type: str = "image/png"


class Clock(Protocol):
    def now(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Monotonic wall clock backed by the running event loop."""

    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class OracleTransport(Protocol):
    async def complete(self, prompt: str, attachments: Sequence[Attachment] = (), purpose: str = "") -> str: ...


@dataclasses.dataclass
class RateLimitState:
    """Rolling call window owned by one gateway."""

    ceiling_per_window: int
    window_duration: float
    window_start: float | None = None
    calls_in_window: int = 0


def is_rate_limit_error(exc: BaseException) -> bool:
    """Match explicit 429s and quota/rate wording in the error message."""
    if isinstance(exc, OracleRateLimited):
        return True
    if getattr(exc, "status_code", None) == 429 or getattr(exc, "status", None) == 429:
        return True
    message = str(exc).lower()
    if "429" in message:
        return True
    if "quota" in message and "exceeded" in message:
        return True
    return any(phrase in message for phrase in _RATE_LIMIT_PHRASES)


class OracleGateway:
    """Rate-limited, retrying wrapper around an ``OracleTransport``."""

    def __init__(
        self,
        transport: OracleTransport,
        clock: Clock | None = None,
        max_attempts: int = models.DEFAULT_MAX_ATTEMPTS,
        calls_per_window: int = models.DEFAULT_CALLS_PER_WINDOW,
        window_seconds: float = models.DEFAULT_WINDOW_SECONDS,
        rate_limit_delays: Sequence[float] = models.RATE_LIMIT_DELAYS,
        backoff_base_seconds: float = models.BACKOFF_BASE_SECONDS,
        backoff_max_seconds: float = models.BACKOFF_MAX_SECONDS,
        ceiling_step: int = models.CEILING_STEP,
        ceiling_floor: int = models.CEILING_FLOOR,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if not rate_limit_delays:
            raise ValueError("rate_limit_delays must not be empty")
        if ceiling_step < 1:
            raise ValueError("ceiling_step must be at least 1")
        if ceiling_floor < 1:
            raise ValueError("ceiling_floor must be at least 1")
        self._transport = transport
        self._clock = clock or SystemClock()
        self._max_attempts = max_attempts
        self._initial_ceiling = calls_per_window
        self._rate_limit_delays = tuple(rate_limit_delays)
        self._backoff_base = backoff_base_seconds
        self._backoff_max = backoff_max_seconds
        self._ceiling_step = ceiling_step
        self._ceiling_floor = ceiling_floor
        self._state = RateLimitState(ceiling_per_window=calls_per_window, window_duration=window_seconds)
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: Any, transport: OracleTransport, clock: Clock | None = None) -> OracleGateway:
        return cls(
            transport,
            clock=clock,
            max_attempts=config.max_attempts,
            calls_per_window=config.calls_per_window,
            window_seconds=config.window_seconds,
            rate_limit_delays=config.rate_limit_delays,
            backoff_base_seconds=config.backoff_base_seconds,
            backoff_max_seconds=config.backoff_max_seconds,
            ceiling_step=config.ceiling_step,
            ceiling_floor=config.ceiling_floor,
        )

    @property
    def state(self) -> RateLimitState:
        return self._state

    @property
    def ceiling(self) -> int:
        return self._state.ceiling_per_window

    # -- Public API ------------------------------------------------------------

    async def complete(self, prompt: str, attachments: Sequence[Attachment] = (), purpose: str = "") -> str:
        """Send *prompt* to the oracle and return its text.

        Raises OracleFatalError once retries are exhausted.
        BudgetExceededError passes through untouched and is never retried.
        """
        last_error: BaseException | None = None
        for attempt in range(self._max_attempts):
            await self._acquire()
            try:
                return await self._transport.complete(prompt, attachments, purpose=purpose)
            except BudgetExceededError:
                raise
            except Exception as exc:
                last_error = exc

            status = getattr(last_error, "status_code", None)
            if status in _NON_RETRYABLE_STATUS:
                logger.error("Oracle call failed with non-retryable status %s: %s", status, last_error)
                raise OracleFatalError(f"Oracle call rejected ({status}): {last_error}", last_error)

            if attempt + 1 >= self._max_attempts:
                break

            if is_rate_limit_error(last_error):
                delay = self._rate_limit_delays[min(attempt, len(self._rate_limit_delays) - 1)]
                await self._lower_ceiling()
                logger.warning(
                    "Oracle rate limited (attempt %d/%d), retrying in %.1fs with ceiling %d: %s",
                    attempt + 1,
                    self._max_attempts,
                    delay,
                    self._state.ceiling_per_window,
                    last_error,
                )
            else:
                delay = min(self._backoff_base * (2**attempt), self._backoff_max)
                logger.warning(
                    "Oracle call failed (attempt %d/%d), retrying in %.1fs: %s",
                    attempt + 1,
                    self._max_attempts,
                    delay,
                    last_error,
                )
            await self._clock.sleep(delay)

        if last_error is not None and is_rate_limit_error(last_error):
            await self._lower_ceiling()
        logger.error("Oracle call failed after %d attempts: %s", self._max_attempts, last_error)
        raise OracleFatalError(f"Oracle call failed after {self._max_attempts} attempts: {last_error}", last_error)

    def status(self) -> dict[str, Any]:
        """Snapshot of the rate window: calls used, ceiling and time to reset."""
        state = self._state
        if state.window_start is None:
            remaining = 0.0
        else:
            remaining = max(0.0, state.window_duration - (self._clock.now() - state.window_start))
        return {
            "calls_in_window": state.calls_in_window,
            "ceiling_per_window": state.ceiling_per_window,
            "seconds_until_reset": round(remaining, 3),
        }

    def reset(self) -> None:
        """Restore the initial window and ceiling."""
        self._state = RateLimitState(
            ceiling_per_window=self._initial_ceiling,
            window_duration=self._state.window_duration,
        )

    # -- Internals -------------------------------------------------------------

    async def _acquire(self) -> None:
        # Serialized so concurrent loops never overshoot the ceiling
        async with self._lock:
            state = self._state
            now = self._clock.now()
            if state.window_start is None or now - state.window_start >= state.window_duration:
                state.window_start = now
                state.calls_in_window = 0
            if state.calls_in_window >= state.ceiling_per_window:
                wait = max(0.0, state.window_duration - (now - state.window_start))
                logger.info(
                    "Oracle window full (%d/%d calls), waiting %.1fs",
                    state.calls_in_window,
                    state.ceiling_per_window,
                    wait,
                )
                await self._clock.sleep(wait)
                state.window_start = self._clock.now()
                state.calls_in_window = 0
            state.calls_in_window += 1

    async def _lower_ceiling(self) -> None:
        async with self._lock:
            current = self._state.ceiling_per_window
            # Drop by the step, but never by more than half, until the floor
            lowered = max(self._ceiling_floor, current - max(1, min(self._ceiling_step, current // 2)))
            if lowered < current:
                self._state.ceiling_per_window = lowered
                logger.warning("Lowered oracle ceiling from %d to %d calls per window", current, lowered)


class AnthropicTransport:
    """OracleTransport backed by the Anthropic Messages API.

    The SDK's own retries are disabled; the gateway owns retry policy.
    Token usage is recorded in the optional CostTracker.
    """

    def __init__(
        self,
        api_key: str | None = None,
        planner_model: str = models.MODELS["planner"],
        evaluator_model: str = models.MODELS["evaluator"],
        cost_tracker: CostTracker | None = None,
        max_tokens: int = 1024,
        timeout: float = 60.0,
    ) -> None:
        self._api_key = api_key
        self._planner_model = planner_model
        self._evaluator_model = evaluator_model
        self._cost_tracker = cost_tracker
        self._max_tokens = max_tokens
        self._timeout = timeout
        self._client: Any = None

    def _get_client(self) -> Any:
        """Return the cached async client, creating it lazily on first use."""
        if self._client is None:
            import anthropic

            kwargs: dict[str, Any] = {"max_retries": 0, "timeout": self._timeout}
            if self._api_key:
                kwargs["api_key"] = self._api_key
            self._client = anthropic.AsyncAnthropic(**kwargs)
        return self._client

    def model_for(self, purpose: str) -> str:
        return self._evaluator_model if purpose == "evaluate" else self._planner_model

    async def complete(self, prompt: str, attachments: Sequence[Attachment] = (), purpose: str = "") -> str:
        if self._cost_tracker is not None:
            self._cost_tracker.check_budget()

        content: list[dict[str, Any]] = []
        for attachment in attachments:
            content.append(
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": attachment.media_type,
                        "data": base64.b64encode(attachment.data).decode("ascii"),
                    },
                }
            )
        content.append({"type": "text", "text": prompt})

        model = self.model_for(purpose)
        response = await self._get_client().messages.create(
            model=model,
            max_tokens=self._max_tokens,
            messages=[{"role": "user", "content": content}],
        )

        if self._cost_tracker is not None:
            usage = response.usage
            self._cost_tracker.record_call(
                model=model,
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
                purpose=purpose,
            )

        raw_text = ""
        for block in response.content:
            if hasattr(block, "text"):
                raw_text += block.text
        return raw_text
