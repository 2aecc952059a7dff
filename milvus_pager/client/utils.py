import datetime
import struct
from copy import deepcopy
from datetime import timedelta
from typing import Any, Dict, Optional, Union

import ujson

from milvus_pager.exceptions import (
    DataSchemaMismatchException,
    ErrorCode,
    ExceptionsMessage,
    LegacyErrorCode,
    MilvusException,
    ParamError,
)

from .constants import LOGICAL_BITS, LOGICAL_BITS_MASK
from .messages import Status

SparseRowOutputType = Dict[int, float]


def check_status(status: Status):
    if status.code == 0 and status.error_code == 0:
        return
    if (
        status.code == ErrorCode.SCHEMA_MISMATCH
        or status.error_code == LegacyErrorCode.SchemaMismatch
    ):
        raise DataSchemaMismatchException(status.code, status.reason, status.error_code)
    raise MilvusException(status.code, status.reason, status.error_code)


def is_successful(status: Status):
    return status.code == 0 and status.error_code == 0


def hybridts_to_unixtime(ts: int):
    physical = hybridts_physical(ts)
    return physical / 1000.0


def hybridts_physical(ts: int) -> int:
    return ts >> LOGICAL_BITS


def hybridts_logical(ts: int) -> int:
    return ts & LOGICAL_BITS_MASK


def mkts_from_hybridts(
    hybridts: int,
    milliseconds: Union[float] = 0.0,
    delta: Optional[timedelta] = None,
) -> int:
    if not isinstance(milliseconds, (int, float)):
        raise MilvusException(message="parameter milliseconds should be type of int or float")

    if isinstance(delta, datetime.timedelta):
        milliseconds += delta.microseconds / 1000.0
    elif delta is not None:
        raise MilvusException(message="parameter delta should be type of datetime.timedelta")

    if not isinstance(hybridts, int):
        raise MilvusException(message="parameter hybridts should be type of int")

    logical = hybridts_logical(hybridts)
    physical = hybridts_physical(hybridts)

    return int((int(physical + milliseconds) << LOGICAL_BITS) + logical)


def mkts_from_unixtime(
    epoch: Union[float],
    milliseconds: Union[float] = 0.0,
    delta: Optional[timedelta] = None,
) -> int:
    if not isinstance(epoch, (int, float)):
        raise MilvusException(message="parameter epoch should be type of int or float")

    if not isinstance(milliseconds, (int, float)):
        raise MilvusException(message="parameter milliseconds should be type of int or float")

    if isinstance(delta, datetime.timedelta):
        milliseconds += delta.microseconds / 1000.0
    elif delta is not None:
        raise MilvusException(message="parameter delta should be type of datetime.timedelta")

    epoch += milliseconds / 1000.0
    int_msecs = int(epoch * 1000 // 1)
    return int(int_msecs << LOGICAL_BITS)


def mkts_from_datetime(
    d_time: datetime.datetime,
    milliseconds: Union[float] = 0.0,
    delta: Optional[timedelta] = None,
) -> int:
    if not isinstance(d_time, datetime.datetime):
        raise MilvusException(message="parameter d_time should be type of datetime.datetime")

    return mkts_from_unixtime(d_time.timestamp(), milliseconds=milliseconds, delta=delta)


def dumps(v: Any):
    if isinstance(v, dict):
        return ujson.dumps(v)
    return str(v)


def loads(v: str):
    return ujson.loads(v)


# parses plain bytes to a sparse float vector(SparseRowOutputType)
def sparse_parse_single_row(data: bytes) -> SparseRowOutputType:
    if len(data) % 8 != 0:
        raise ParamError(message=ExceptionsMessage.SparseBytesInvalid % len(data))

    return {
        struct.unpack("<I", data[i : i + 4])[0]: struct.unpack("<f", data[i + 4 : i + 8])[0]
        for i in range(0, len(data), 8)
    }


def float_to_str(value: float) -> str:
    # repr keeps the full double precision, the server parses it as float64
    return repr(float(value))


def get_params(search_params: Dict):
    # parameters can be written into one layer, the server still expects them
    # under search_params.params, so merge both layers there
    params = deepcopy(search_params.get("params", {}))
    for key, value in search_params.items():
        if key in params:
            if params[key] != value:
                raise ParamError(
                    message=f"ambiguous parameter: {key}, in search_param: {value}, "
                    f"in search_param.params: {params[key]}"
                )
        elif key != "params":
            params[key] = value

    return params
