"""Tests for rate limit backoff and model fallback (no network, no real sleeps)."""

import random

import pytest

from assistant_plugin_tools.backoff import (
    FallbackResult,
    compute_backoff_delay,
    execute_with_fallback,
    is_rate_limit_error,
)
from assistant_plugin_tools.constants import (
    CODEX_DEFAULT_MODEL,
    RATE_LIMIT_INITIAL_DELAY,
    RATE_LIMIT_MAX_DELAY,
    RATE_LIMIT_RETRY_COUNT,
)


class RecordingSleep:
    def __init__(self):
        self.delays = []

    def __call__(self, ms):
        self.delays.append(ms)


class ScriptedExecutor:
    """Raises the scripted errors in order, then answers."""

    def __init__(self, errors=()):
        self.errors = list(errors)
        self.calls = []

    def __call__(self, prompt, model):
        self.calls.append(model)
        if self.errors:
            error = self.errors.pop(0)
            if error is not None:
                raise error
        return f"Response from {model}"


class FixedRng:
    """Random source that always picks one end of the range."""

    def __init__(self, pick_high):
        self.pick_high = pick_high

    def randint(self, a, b):
        return b if self.pick_high else a


class TestComputeBackoffDelay:

    def test_attempt_zero_range(self):
        for _ in range(50):
            delay = compute_backoff_delay(0, 5000, 60000)
            assert 2500 <= delay <= 5000

    def test_bounds_with_fixed_rng(self):
        assert compute_backoff_delay(1, 5000, 60000, rng=FixedRng(False)) == 5000
        assert compute_backoff_delay(1, 5000, 60000, rng=FixedRng(True)) == 10000
        assert compute_backoff_delay(2, 5000, 60000, rng=FixedRng(False)) == 10000

    def test_minimum_grows_until_cap(self):
        low = FixedRng(False)
        minimums = [compute_backoff_delay(n, 5000, 60000, rng=low) for n in range(5)]
        assert minimums == [2500, 5000, 10000, 20000, 30000]
        assert compute_backoff_delay(10, 5000, 60000, rng=low) == 30000

    def test_caps_at_max_delay(self):
        for _ in range(50):
            delay = compute_backoff_delay(20, 5000, 60000)
            assert 30000 <= delay <= 60000

    def test_uses_configured_defaults(self):
        delay = compute_backoff_delay(0)
        assert RATE_LIMIT_INITIAL_DELAY * 0.5 <= delay <= RATE_LIMIT_INITIAL_DELAY

    def test_always_positive_integer(self):
        rng = random.Random(1234)
        for i in range(100):
            delay = compute_backoff_delay(i % 10, 1000, 30000, rng=rng)
            assert isinstance(delay, int)
            assert delay > 0

    def test_odd_base_stays_within_half(self):
        assert compute_backoff_delay(0, 1001, 60000, rng=FixedRng(False)) == 501

    def test_zero_initial_delay_is_still_positive(self):
        assert compute_backoff_delay(0, 0, 60000) == 1


class TestRateLimitConfig:

    def test_defaults(self):
        assert RATE_LIMIT_RETRY_COUNT == 3
        assert RATE_LIMIT_INITIAL_DELAY == 5000
        assert RATE_LIMIT_MAX_DELAY == 60000

    def test_minimum_bounds(self):
        assert RATE_LIMIT_RETRY_COUNT >= 1
        assert RATE_LIMIT_INITIAL_DELAY >= 1000
        assert RATE_LIMIT_MAX_DELAY >= 5000


class TestIsRateLimitError:

    @pytest.mark.parametrize("message", [
        "429 Too Many Requests",
        "rate limit exceeded",
        "Rate_Limit reached",
        "too many requests",
        "QUOTA_EXCEEDED",
        "quota exceeded for project",
        "resource_exhausted",
        "Resource Exhausted",
    ])
    def test_rate_limit_messages(self, message):
        assert is_rate_limit_error(RuntimeError(message))

    @pytest.mark.parametrize("message", [
        "Connection refused",
        "Codex model error: model_not_found",
        "API error (500): internal error",
    ])
    def test_generic_messages(self, message):
        assert not is_rate_limit_error(RuntimeError(message))


class TestExplicitModel:

    def test_retries_on_rate_limit(self):
        sleep = RecordingSleep()
        executor = ScriptedExecutor([
            RuntimeError("Codex rate limit error: 429 Too Many Requests"),
            RuntimeError("Codex rate limit error: 429 Too Many Requests"),
        ])

        result = execute_with_fallback(
            "test prompt", "gpt-5.3-codex", executor=executor, sleep_fn=sleep,
        )

        assert result == FallbackResult(
            response="Response from gpt-5.3-codex",
            used_fallback=False,
            actual_model="gpt-5.3-codex",
        )
        assert len(executor.calls) == 3
        assert len(sleep.delays) == 2
        assert sleep.delays[0] >= RATE_LIMIT_INITIAL_DELAY * 0.5
        assert sleep.delays[1] >= RATE_LIMIT_INITIAL_DELAY

    def test_succeeds_after_exactly_retry_count_rate_limits(self):
        sleep = RecordingSleep()
        executor = ScriptedExecutor([RuntimeError("429")] * RATE_LIMIT_RETRY_COUNT)

        result = execute_with_fallback("p", "m", executor=executor, sleep_fn=sleep)

        assert result.response == "Response from m"
        assert result.used_fallback is False
        assert len(sleep.delays) == RATE_LIMIT_RETRY_COUNT

    def test_raises_after_exhausting_retries(self):
        sleep = RecordingSleep()
        last = RuntimeError("429 Too Many Requests (last)")
        executor = ScriptedExecutor(
            [RuntimeError("429 Too Many Requests")] * RATE_LIMIT_RETRY_COUNT + [last]
        )

        with pytest.raises(RuntimeError) as exc_info:
            execute_with_fallback("p", "gpt-5.3-codex", executor=executor, sleep_fn=sleep)

        assert exc_info.value is last
        assert len(executor.calls) == RATE_LIMIT_RETRY_COUNT + 1
        assert len(sleep.delays) == RATE_LIMIT_RETRY_COUNT

    def test_generic_error_is_not_retried(self):
        sleep = RecordingSleep()
        executor = ScriptedExecutor([ConnectionError("Connection refused")])

        with pytest.raises(ConnectionError, match="Connection refused"):
            execute_with_fallback("p", "gpt-5.3-codex", executor=executor, sleep_fn=sleep)

        assert len(executor.calls) == 1
        assert sleep.delays == []

    def test_explicit_model_ignores_chain(self):
        executor = ScriptedExecutor()
        result = execute_with_fallback(
            "p", "explicit", fallback_chain=["a", "b"],
            executor=executor, sleep_fn=RecordingSleep(),
        )
        assert executor.calls == ["explicit"]
        assert result.actual_model == "explicit"

    def test_custom_retry_count(self):
        sleep = RecordingSleep()
        executor = ScriptedExecutor([RuntimeError("429")] * 5)

        with pytest.raises(RuntimeError):
            execute_with_fallback("p", "m", executor=executor, sleep_fn=sleep, max_retries=1)

        assert len(executor.calls) == 2
        assert len(sleep.delays) == 1


class TestFallbackChain:

    def test_backoff_between_rate_limited_models(self):
        sleep = RecordingSleep()
        executor = ScriptedExecutor([
            RuntimeError("Codex rate limit error: 429 Too Many Requests"),
            RuntimeError("Codex rate limit error: 429 Too Many Requests"),
        ])

        result = execute_with_fallback(
            "p", fallback_chain=[CODEX_DEFAULT_MODEL, "model-b", "model-c"],
            executor=executor, sleep_fn=sleep,
        )

        assert result.response == "Response from model-c"
        assert result.used_fallback is True
        assert result.actual_model == "model-c"
        assert executor.calls == [CODEX_DEFAULT_MODEL, "model-b", "model-c"]
        assert len(sleep.delays) == 2
        # counter is call-wide: second delay uses attempt 1
        assert sleep.delays[1] >= RATE_LIMIT_INITIAL_DELAY

    def test_no_backoff_for_generic_errors(self):
        sleep = RecordingSleep()
        executor = ScriptedExecutor([RuntimeError("Codex model error: model_not_found")])

        result = execute_with_fallback(
            "p", fallback_chain=[CODEX_DEFAULT_MODEL, "model-b"],
            executor=executor, sleep_fn=sleep,
        )

        assert result.response == "Response from model-b"
        assert result.used_fallback is True
        assert sleep.delays == []

    def test_first_model_success_is_not_fallback(self):
        sleep = RecordingSleep()
        executor = ScriptedExecutor()

        result = execute_with_fallback(
            "p", fallback_chain=[CODEX_DEFAULT_MODEL, "model-b"],
            executor=executor, sleep_fn=sleep,
        )

        assert result.response == f"Response from {CODEX_DEFAULT_MODEL}"
        assert result.used_fallback is False
        assert executor.calls == [CODEX_DEFAULT_MODEL]
        assert sleep.delays == []

    def test_mixed_rate_limit_and_generic_errors(self):
        sleep = RecordingSleep()
        executor = ScriptedExecutor([
            RuntimeError("Codex rate limit error: 429"),
            RuntimeError("Codex model error: model_not_found"),
        ])

        result = execute_with_fallback(
            "p", fallback_chain=["a", "b", "c"], executor=executor, sleep_fn=sleep,
        )

        assert result.response == "Response from c"
        assert len(executor.calls) == 3
        assert len(sleep.delays) == 1

    def test_last_model_error_propagates_unchanged(self):
        sleep = RecordingSleep()
        last = RuntimeError("resource_exhausted on c")
        executor = ScriptedExecutor([RuntimeError("boom"), RuntimeError("429"), last])

        with pytest.raises(RuntimeError) as exc_info:
            execute_with_fallback(
                "p", fallback_chain=["a", "b", "c"], executor=executor, sleep_fn=sleep,
            )

        assert exc_info.value is last
        assert is_rate_limit_error(exc_info.value)
        # no sleep after the final failure
        assert len(sleep.delays) == 1

    def test_single_model_chain_does_not_sleep(self):
        sleep = RecordingSleep()
        executor = ScriptedExecutor([RuntimeError("429")])

        with pytest.raises(RuntimeError):
            execute_with_fallback("p", fallback_chain=["only"], executor=executor, sleep_fn=sleep)

        assert sleep.delays == []

    def test_single_model_chain_success_is_not_fallback(self):
        executor = ScriptedExecutor()

        result = execute_with_fallback(
            "p", fallback_chain=["only"], executor=executor, sleep_fn=RecordingSleep(),
        )

        assert result.used_fallback is False
        assert result.actual_model == "only"
        assert executor.calls == ["only"]

    def test_last_model_success_is_fallback(self):
        executor = ScriptedExecutor([RuntimeError("boom")])

        result = execute_with_fallback(
            "p", fallback_chain=["a", "b"], executor=executor, sleep_fn=RecordingSleep(),
        )

        assert result.used_fallback is True
        assert result.actual_model == "b"

    def test_default_chain(self, monkeypatch):
        from assistant_plugin_tools import backoff

        monkeypatch.setattr(backoff, "DEFAULT_FALLBACK_CHAIN", ["x", "y"])
        executor = ScriptedExecutor([RuntimeError("nope")])

        result = execute_with_fallback("p", executor=executor, sleep_fn=RecordingSleep())

        assert executor.calls == ["x", "y"]
        assert result.actual_model == "y"

    def test_empty_chain_rejected(self):
        with pytest.raises(ValueError):
            execute_with_fallback(
                "p", fallback_chain=[], executor=ScriptedExecutor(), sleep_fn=RecordingSleep(),
            )

    def test_rate_limit_patterns_trigger_backoff(self):
        for pattern in [
            "429 Too Many Requests",
            "rate limit exceeded",
            "Rate_Limit reached",
            "too many requests",
            "quota_exceeded",
            "resource_exhausted",
        ]:
            sleep = RecordingSleep()
            executor = ScriptedExecutor([RuntimeError(pattern)])

            result = execute_with_fallback("p", "explicit-model", executor=executor, sleep_fn=sleep)

            assert "Response from" in result.response
            assert len(sleep.delays) == 1
