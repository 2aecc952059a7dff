import time
from unittest.mock import patch

import grpc
import pytest

from milvus_pager.decorators import (
    IGNORE_RETRY_CODES,
    RetrySetting,
    error_handler,
    execute_with_retry,
    retry_on_rpc_failure,
)
from milvus_pager.exceptions import (
    ErrorCode,
    LegacyErrorCode,
    MilvusException,
    MilvusTimeoutException,
    ParamError,
    RpcFailedException,
)

from utils import MockGrpcError


def fast_setting(times: int, **kwargs) -> RetrySetting:
    return RetrySetting(max_retry_times=times, initial_backoff_ms=1, max_backoff_ms=1, **kwargs)


class Failing:
    """Raises the given errors in order, then returns "ok"."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.count = 0

    def __call__(self):
        self.count += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


class TestRetrySetting:
    def test_defaults(self):
        setting = RetrySetting()
        assert setting.max_retry_times == 75
        assert setting.max_retry_timeout_ms == 0
        assert setting.initial_backoff_ms == 10
        assert setting.max_backoff_ms == 3000
        assert setting.backoff_multiplier == 3
        assert setting.retry_on_rate_limit is True

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_retry_timeout_ms": -1},
            {"initial_backoff_ms": 0},
            {"initial_backoff_ms": 100, "max_backoff_ms": 10},
            {"backoff_multiplier": 0.5},
        ],
    )
    def test_invalid(self, kwargs):
        with pytest.raises(ParamError):
            RetrySetting(**kwargs)

    def test_repr(self):
        assert "max_retry_times=3" in repr(RetrySetting(max_retry_times=3))


class TestExecuteWithRetry:
    @pytest.mark.parametrize("k", [0, 1, 3])
    def test_unavailable_then_success(self, k):
        caller = Failing(*[MockGrpcError(grpc.StatusCode.UNAVAILABLE) for _ in range(k)])
        assert execute_with_retry(caller, fast_setting(5)) == "ok"
        assert caller.count == k + 1

    def test_rate_limit_then_success(self):
        caller = Failing(
            MilvusException(ErrorCode.RATE_LIMIT, "rate limit"),
            MilvusException(ErrorCode.UNEXPECTED_ERROR, "rate limit", LegacyErrorCode.RateLimit),
        )
        assert execute_with_retry(caller, fast_setting(5)) == "ok"
        assert caller.count == 3

    def test_always_failing_runs_out(self):
        caller = Failing(*[MockGrpcError(grpc.StatusCode.UNAVAILABLE) for _ in range(10)])
        with pytest.raises(MilvusTimeoutException, match="Retry run out of 4 retry times"):
            execute_with_retry(caller, fast_setting(4))
        assert caller.count == 4

    def test_rate_limit_runs_out_keeps_code(self):
        caller = Failing(*[MilvusException(ErrorCode.RATE_LIMIT, "busy") for _ in range(10)])
        with pytest.raises(MilvusTimeoutException) as e:
            execute_with_retry(caller, fast_setting(3))
        assert e.value.code == ErrorCode.RATE_LIMIT
        assert caller.count == 3

    def test_rate_limit_not_retried_when_disabled(self):
        caller = Failing(MilvusException(ErrorCode.RATE_LIMIT, "busy"))
        with pytest.raises(MilvusException, match="busy"):
            execute_with_retry(caller, fast_setting(5, retry_on_rate_limit=False))
        assert caller.count == 1

    @pytest.mark.parametrize(
        "code", [c for c in IGNORE_RETRY_CODES if c != grpc.StatusCode.DEADLINE_EXCEEDED]
    )
    def test_terminal_rpc_codes(self, code):
        caller = Failing(MockGrpcError(code))
        with pytest.raises(RpcFailedException) as e:
            execute_with_retry(caller, fast_setting(5))
        assert e.value.rpc_code == code
        assert caller.count == 1

    def test_deadline_exceeded_is_timeout(self):
        caller = Failing(MockGrpcError(grpc.StatusCode.DEADLINE_EXCEEDED))
        with pytest.raises(MilvusTimeoutException):
            execute_with_retry(caller, fast_setting(5))
        assert caller.count == 1

    def test_other_server_errors_not_retried(self):
        caller = Failing(MilvusException(ErrorCode.FORCE_DENY, "force deny"))
        with pytest.raises(MilvusException, match="force deny"):
            execute_with_retry(caller, fast_setting(5))
        assert caller.count == 1

    def test_retry_disabled(self):
        caller = Failing(MilvusException(ErrorCode.RATE_LIMIT, "busy"))
        with pytest.raises(MilvusException, match="busy"):
            execute_with_retry(caller, fast_setting(1))
        assert caller.count == 1

    def test_retry_timeout(self):
        setting = RetrySetting(
            max_retry_times=100, max_retry_timeout_ms=50, initial_backoff_ms=30, max_backoff_ms=30
        )

        def caller():
            time.sleep(0.01)
            raise MockGrpcError(grpc.StatusCode.UNAVAILABLE)

        with pytest.raises(MilvusTimeoutException, match="Retry timeout: 50ms"):
            execute_with_retry(caller, setting)

    def test_backoff_grows_and_caps(self):
        setting = RetrySetting(
            max_retry_times=5, initial_backoff_ms=10, backoff_multiplier=3, max_backoff_ms=50
        )
        caller = Failing(*[MockGrpcError(grpc.StatusCode.UNAVAILABLE) for _ in range(4)])
        with patch("milvus_pager.decorators.time.sleep") as mock_sleep:
            execute_with_retry(caller, setting)
        slept = [call.args[0] for call in mock_sleep.call_args_list]
        assert slept == pytest.approx([0.01, 0.03, 0.05, 0.05])


class TestRetryDecorator:
    def test_uses_handler_setting(self):
        class Handler:
            retry_setting = fast_setting(3)

            def __init__(self):
                self.count = 0

            @retry_on_rpc_failure()
            def call(self):
                self.count += 1
                raise MockGrpcError(grpc.StatusCode.UNAVAILABLE)

        h = Handler()
        with pytest.raises(MilvusTimeoutException):
            h.call()
        assert h.count == 3

    def test_retry_setting_kwarg_overrides(self):
        class Handler:
            retry_setting = fast_setting(10)

            def __init__(self):
                self.count = 0

            @retry_on_rpc_failure()
            def call(self, **kwargs):
                assert "retry_setting" not in kwargs
                self.count += 1
                raise MilvusException(ErrorCode.RATE_LIMIT, "busy")

        h = Handler()
        with pytest.raises(MilvusTimeoutException):
            h.call(retry_setting=fast_setting(2))
        assert h.count == 2


class TestErrorHandler:
    def test_wraps_unexpected_errors(self):
        @error_handler(func_name="broken")
        def broken():
            raise ValueError("boom")

        with patch("milvus_pager.decorators.LOGGER") as mock_logger:
            with pytest.raises(MilvusException, match="boom") as e:
                broken()
        assert isinstance(e.value.__cause__, ValueError)
        assert "broken" in mock_logger.error.call_args.args[0]

    def test_milvus_exceptions_pass_through(self):
        @error_handler()
        def failing():
            raise ParamError(message="bad")

        with patch("milvus_pager.decorators.LOGGER"), pytest.raises(ParamError, match="bad"):
            failing()
