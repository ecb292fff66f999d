"""Rate limit backoff and model fallback for code generation calls.

Rate-limited calls are retried with jittered exponential backoff. Without an
explicit model, a prioritized fallback chain is walked instead.
"""

import os
import random
import re
import sys
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from assistant_plugin_tools.constants import (
    DEBUG_ENV_VAR,
    DEFAULT_FALLBACK_CHAIN,
    RATE_LIMIT_INITIAL_DELAY,
    RATE_LIMIT_MAX_DELAY,
    RATE_LIMIT_RETRY_COUNT,
)


Executor = Callable[[str, str], str]
SleepFn = Callable[[int], None]

RATE_LIMIT_PATTERN = re.compile(
    r"429|rate[ _]limit|too many requests|quota[ _]exceeded|resource[ _]exhausted",
    re.IGNORECASE,
)


@dataclass
class FallbackResult:
    """Result of a code generation call with retry/fallback."""
    response: str
    used_fallback: bool
    actual_model: str


def compute_backoff_delay(
    attempt: int,
    initial_delay: int = RATE_LIMIT_INITIAL_DELAY,
    max_delay: int = RATE_LIMIT_MAX_DELAY,
    rng: Optional[random.Random] = None,
) -> int:
    """
    Compute a jittered exponential backoff delay.

    Args:
        attempt: 0-based retry attempt
        initial_delay: Delay for attempt 0, in milliseconds
        max_delay: Cap on the exponential value, in milliseconds
        rng: Random source (defaults to the module-level generator)

    Returns:
        Delay in milliseconds, uniform in [base/2, base] where
        base = min(initial_delay * 2**attempt, max_delay). Always >= 1.
    """
    rng = rng or random
    base = int(min(initial_delay * (2 ** attempt), max_delay))
    low = (base + 1) // 2
    return max(1, rng.randint(low, max(low, base)))


def is_rate_limit_error(error: BaseException) -> bool:
    """Check if an error message looks like provider throttling."""
    return RATE_LIMIT_PATTERN.search(str(error)) is not None


def _sleep_ms(ms: int) -> None:
    time.sleep(ms / 1000)


def _debug(message: str) -> None:
    if os.environ.get(DEBUG_ENV_VAR):
        print(f"[DEBUG] {message}", file=sys.stderr)


def _default_executor(cwd: Optional[str]) -> Executor:
    from assistant_plugin_tools.model_client import get_model_client, make_executor

    return make_executor(get_model_client(), cwd=cwd)


def execute_with_fallback(
    prompt: str,
    model: Optional[str] = None,
    cwd: Optional[str] = None,
    fallback_chain: Optional[List[str]] = None,
    executor: Optional[Executor] = None,
    sleep_fn: Optional[SleepFn] = None,
    max_retries: int = RATE_LIMIT_RETRY_COUNT,
    initial_delay: int = RATE_LIMIT_INITIAL_DELAY,
    max_delay: int = RATE_LIMIT_MAX_DELAY,
) -> FallbackResult:
    """
    Run a prompt against a model, retrying on rate limits.

    With an explicit model, only that model is used: rate-limit errors are
    retried up to max_retries times with backoff, any other error is raised
    at once.

    Without one, each model in fallback_chain is tried once, in order.
    A rate-limit error sleeps before moving on (the delay grows with the
    number of rate limits seen so far in this call); any other error moves
    on immediately. The last model's error is raised unchanged.

    Args:
        prompt: Prompt text
        model: Explicit model; disables the fallback chain
        cwd: Working directory passed to the default executor
        fallback_chain: Ordered models to try (default: DEFAULT_FALLBACK_CHAIN)
        executor: Callable (prompt, model) -> response
        sleep_fn: Callable taking milliseconds
        max_retries: Rate limit retries in explicit mode
        initial_delay: Backoff delay for the first retry, in milliseconds
        max_delay: Backoff cap, in milliseconds

    Returns:
        FallbackResult with the response and the model that produced it
    """
    if executor is None:
        executor = _default_executor(cwd)
    if sleep_fn is None:
        sleep_fn = _sleep_ms

    if model:
        attempt = 0
        while True:
            try:
                response = executor(prompt, model)
                return FallbackResult(response=response, used_fallback=False, actual_model=model)
            except Exception as e:
                if not is_rate_limit_error(e) or attempt >= max_retries:
                    raise
                delay = compute_backoff_delay(attempt, initial_delay, max_delay)
                _debug(f"{model} rate limited, retry {attempt + 1}/{max_retries} in {delay}ms")
                sleep_fn(delay)
                attempt += 1

    chain = list(DEFAULT_FALLBACK_CHAIN if fallback_chain is None else fallback_chain)
    if not chain:
        raise ValueError("Fallback chain is empty")

    rate_limit_count = 0
    for index, candidate in enumerate(chain[:-1]):
        try:
            response = executor(prompt, candidate)
            return FallbackResult(
                response=response,
                used_fallback=index > 0,
                actual_model=candidate,
            )
        except Exception as e:
            if is_rate_limit_error(e):
                delay = compute_backoff_delay(rate_limit_count, initial_delay, max_delay)
                rate_limit_count += 1
                _debug(f"{candidate} rate limited, falling back to {chain[index + 1]} in {delay}ms")
                sleep_fn(delay)
            else:
                _debug(f"{candidate} failed ({e}), falling back to {chain[index + 1]}")

    # Last candidate: its error propagates unchanged
    last = chain[-1]
    response = executor(prompt, last)
    return FallbackResult(response=response, used_fallback=len(chain) > 1, actual_model=last)
