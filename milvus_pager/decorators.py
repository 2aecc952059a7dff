import datetime
import functools
import logging
import time
from typing import Any, Callable, Optional

import grpc

from .exceptions import (
    ErrorCode,
    LegacyErrorCode,
    MilvusException,
    MilvusTimeoutException,
    ParamError,
    RpcFailedException,
)
from .settings import Config

LOGGER = logging.getLogger(__name__)
WARNING_COLOR = "\033[93m{}\033[0m"


# Reference: https://grpc.github.io/grpc/python/grpc.html#grpc-status-code
IGNORE_RETRY_CODES = (
    grpc.StatusCode.DEADLINE_EXCEEDED,
    grpc.StatusCode.PERMISSION_DENIED,
    grpc.StatusCode.UNAUTHENTICATED,
    grpc.StatusCode.INVALID_ARGUMENT,
    grpc.StatusCode.ALREADY_EXISTS,
    grpc.StatusCode.RESOURCE_EXHAUSTED,
    grpc.StatusCode.UNIMPLEMENTED,
)


class RetrySetting:
    """Parameters of the retry machinery.

    For server-side rate limit errors the call is retried until it succeeds or the budget runs
    out. Network errors listed in ``IGNORE_RETRY_CODES`` and other server errors are returned
    without retry.

    :param max_retry_times: max attempts, a value <= 1 disables retry
    :param max_retry_timeout_ms: wall-clock budget measured from the first attempt, 0 is unbounded
    :param initial_backoff_ms: sleep interval after the first failed attempt
    :param backoff_multiplier: growth factor of the sleep interval
    :param max_backoff_ms: upper bound of the sleep interval
    :param retry_on_rate_limit: whether rate limit errors reported by the server are retried
    """

    def __init__(
        self,
        max_retry_times: int = 75,
        max_retry_timeout_ms: int = 0,
        initial_backoff_ms: int = 10,
        backoff_multiplier: float = 3,
        max_backoff_ms: int = 3000,
        retry_on_rate_limit: bool = True,
    ) -> None:
        if max_retry_timeout_ms < 0:
            raise ParamError(message="max_retry_timeout_ms cannot be negative")
        if initial_backoff_ms <= 0:
            raise ParamError(message="initial_backoff_ms must be greater than 0")
        if max_backoff_ms < initial_backoff_ms:
            raise ParamError(message="max_backoff_ms cannot be less than initial_backoff_ms")
        if backoff_multiplier < 1:
            raise ParamError(message="backoff_multiplier cannot be less than 1")

        self.max_retry_times = max_retry_times
        self.max_retry_timeout_ms = max_retry_timeout_ms
        self.initial_backoff_ms = initial_backoff_ms
        self.backoff_multiplier = backoff_multiplier
        self.max_backoff_ms = max_backoff_ms
        self.retry_on_rate_limit = retry_on_rate_limit

    @classmethod
    def from_config(cls):
        return cls(
            max_retry_times=Config.MILVUS_RETRY_TIMES,
            max_retry_timeout_ms=Config.MILVUS_RETRY_TIMEOUT_MS,
            initial_backoff_ms=Config.MILVUS_INITIAL_BACKOFF_MS,
            backoff_multiplier=Config.MILVUS_BACKOFF_MULTIPLIER,
            max_backoff_ms=Config.MILVUS_MAX_BACKOFF_MS,
            retry_on_rate_limit=Config.MILVUS_RETRY_ON_RATE_LIMIT,
        )

    def __repr__(self) -> str:
        attr_list = [f"{key}={value}" for key, value in self.__dict__.items()]
        return f"{self.__class__.__name__}({', '.join(attr_list)})"


def is_rate_limit(e: MilvusException) -> bool:
    # 2.3+ servers report code 8, older servers only fill the legacy error_code
    return e.code == ErrorCode.RATE_LIMIT or e.compatible_code == LegacyErrorCode.RateLimit


def execute_with_retry(
    caller: Callable[[], Any],
    retry_setting: Optional[RetrySetting] = None,
    func_name: str = "",
):
    """Run caller with classification-aware retry.

    The caller raises ``grpc.RpcError`` for transport failures and ``MilvusException`` for
    failures reported by the server. Returns whatever caller returns on success.
    """
    setting = retry_setting if retry_setting is not None else RetrySetting.from_config()
    max_retry_times = setting.max_retry_times
    if max_retry_times <= 1:
        return caller()

    name = func_name or getattr(caller, "__name__", "rpc")
    start_time = time.time()
    max_timeout_ms = setting.max_retry_timeout_ms

    def is_timeout() -> bool:
        cost_ms = (time.time() - start_time) * 1000
        return max_timeout_ms > 0 and cost_ms >= max_timeout_ms

    back_off_ms = setting.initial_backoff_ms
    for counter in range(1, max_retry_times + 1):
        try:
            return caller()
        except grpc.RpcError as e:
            rpc_code = e.code()
            if rpc_code in IGNORE_RETRY_CODES:
                msg = (
                    f"[{name}] Encounter rpc error that cannot be retried, "
                    f"reason: <{rpc_code}, {e.details()}>"
                )
                if rpc_code == grpc.StatusCode.DEADLINE_EXCEEDED:
                    raise MilvusTimeoutException(message=msg) from e
                raise RpcFailedException(message=msg, rpc_code=rpc_code) from e
            last_error, reason = e, f"<{e.__class__.__name__}: {rpc_code}, {e.details()}>"
        except MilvusException as e:
            if not (setting.retry_on_rate_limit and is_rate_limit(e)):
                raise
            last_error, reason = e, f"<{e.__class__.__name__}: {e.code}, {e.message}>"

        if counter >= max_retry_times:
            msg = f"[{name}] Retry run out of {max_retry_times} retry times, message={reason}"
            LOGGER.warning(WARNING_COLOR.format(msg))
            code = ErrorCode.UNEXPECTED_ERROR
            if isinstance(last_error, MilvusException):
                code = last_error.code
            raise MilvusTimeoutException(code=code, message=msg) from last_error

        if counter > 3:
            LOGGER.info(
                f"[{name}] retry:{counter}, cost: {back_off_ms / 1000:.2f}s, reason: {reason}"
            )

        time.sleep(back_off_ms / 1000.0)
        back_off_ms = min(back_off_ms * setting.backoff_multiplier, setting.max_backoff_ms)

        if is_timeout():
            msg = (
                f"[{name}] Retry timeout: {max_timeout_ms}ms, max_retry: {max_retry_times}, "
                f"retries: {counter + 1}, reason: {reason}"
            )
            LOGGER.warning(WARNING_COLOR.format(msg))
            raise MilvusTimeoutException(message=msg) from last_error

    # unreachable, the loop either returns or raises
    raise MilvusException(message=f"[{name}] retry loop exited unexpectedly")


def retry_on_rpc_failure():
    """Decorate a handler method so that it runs through ``execute_with_retry``.

    The retry setting is taken from the ``retry_setting`` keyword argument when given,
    otherwise from the handler's ``retry_setting`` attribute.
    """

    def wrapper(func: Any):
        @functools.wraps(func)
        @error_handler(func_name=func.__name__)
        def handler(self: Any, *args, **kwargs):
            setting = kwargs.pop("retry_setting", None) or getattr(self, "retry_setting", None)
            return execute_with_retry(
                lambda: func(self, *args, **kwargs), setting, func_name=func.__name__
            )

        return handler

    return wrapper


def error_handler(func_name: str = ""):
    def wrapper(func: Callable):
        @functools.wraps(func)
        def handler(*args, **kwargs):
            inner_name = func_name
            if inner_name == "":
                inner_name = func.__name__
            record_dict = {}
            try:
                record_dict["RPC start"] = str(datetime.datetime.now())
                return func(*args, **kwargs)
            except MilvusException as e:
                record_dict["RPC error"] = str(datetime.datetime.now())
                LOGGER.error(f"RPC error: [{inner_name}], {e}, <Time:{record_dict}>")
                raise
            except grpc.RpcError as e:
                record_dict["gRPC error"] = str(datetime.datetime.now())
                LOGGER.error(
                    f"grpc RpcError: [{inner_name}], <{e.__class__.__name__}: "
                    f"{e.code()}, {e.details()}>, <Time:{record_dict}>"
                )
                raise
            except Exception as e:
                record_dict["Exception"] = str(datetime.datetime.now())
                LOGGER.error(f"Unexpected error: [{inner_name}], {e}, <Time: {record_dict}>")
                raise MilvusException(message=f"Unexpected error, message=<{e!s}>") from e

        return handler

    return wrapper
