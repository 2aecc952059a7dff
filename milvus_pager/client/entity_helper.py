import logging
import math
import struct
from typing import Any, Dict, Iterable, List, Optional

import numpy as np
import orjson

from milvus_pager.exceptions import (
    DataNotMatchException,
    DataTypeNotSupportException,
    ExceptionsMessage,
    ParamError,
)
from milvus_pager.settings import Config

from . import messages
from .field_data import FieldData
from .types import DataType
from .utils import SparseRowOutputType, sparse_parse_single_row

logger = logging.getLogger(__name__)

SPARSE_MAX_INDEX = 2**32 - 1

_SCALAR_WIRE_TYPES = (
    DataType.BOOL,
    DataType.INT8,
    DataType.INT16,
    DataType.INT32,
    DataType.INT64,
    DataType.FLOAT,
    DataType.DOUBLE,
    DataType.STRING,
    DataType.VARCHAR,
)
_VECTOR_WIRE_TYPES = (
    DataType.FLOAT_VECTOR,
    DataType.BINARY_VECTOR,
    DataType.FLOAT16_VECTOR,
    DataType.BFLOAT16_VECTOR,
    DataType.INT8_VECTOR,
)


def entity_is_sparse_matrix(entity: Any):
    def is_int_type(v: Any):
        return isinstance(v, (int, np.integer)) and not isinstance(v, bool)

    def is_float_type(v: Any):
        return isinstance(v, (float, int, np.floating, np.integer)) and not isinstance(v, bool)

    if not isinstance(entity, (list, tuple)) or len(entity) == 0:
        return False
    for item in entity:
        if not isinstance(item, (dict, list)):
            return False
        pairs = item.items() if isinstance(item, dict) else item
        # each row must be a list of Tuple[int, float], an empty row is allowed
        for pair in pairs:
            if not isinstance(pair, (list, tuple)):
                return False
            if len(pair) != 2 or not is_int_type(pair[0]) or not is_float_type(pair[1]):
                return False
    return True


# converts a sparse float vector to plain bytes. the format is the same as how
# milvus interprets/persists the data.
def sparse_float_row_to_bytes(indices: Iterable[int], values: Iterable[float]) -> bytes:
    indices = list(indices)
    values = list(values)
    if len(indices) != len(values):
        raise ParamError(
            message="length of indices and values must be the same, "
            f"got {len(indices)} and {len(values)}"
        )
    data = b""
    last = None
    for i, v in sorted(zip(indices, values), key=lambda x: x[0]):
        if not (0 <= i < SPARSE_MAX_INDEX):
            raise ParamError(message=ExceptionsMessage.SparseIndexInvalid % i)
        if math.isnan(v):
            raise ParamError(message=ExceptionsMessage.SparseValueNaN)
        if i == last:
            raise ParamError(message=f"sparse vector index must be unique, got duplicate index {i}")
        last = i
        data += struct.pack("<I", i)
        data += struct.pack("<f", v)
    return data


def sparse_row_to_bytes(row: Any) -> bytes:
    pairs = row.items() if isinstance(row, dict) else row
    indices, values = [], []
    for index, value in pairs:
        indices.append(int(index))
        values.append(float(value))
    return sparse_float_row_to_bytes(indices, values)


def sparse_rows_to_proto(data: List[Any]) -> messages.FieldData:
    """Pack sparse rows into a wire column, dim is one past the largest index seen."""
    if not entity_is_sparse_matrix(data):
        raise ParamError(message="input must be a sparse matrix in supported format")

    contents, dim = [], 0
    for row in data:
        contents.append(sparse_row_to_bytes(row))
        pairs = row.keys() if isinstance(row, dict) else (p[0] for p in row)
        dim = max(dim, max((int(i) + 1 for i in pairs), default=0))
    return messages.FieldData(
        field_name="", type=DataType.SPARSE_FLOAT_VECTOR, data=contents, dim=dim
    )


def sparse_proto_to_rows(
    contents: List[bytes], start: Optional[int] = None, end: Optional[int] = None
) -> List[SparseRowOutputType]:
    if start is None:
        start = 0
    if end is None:
        end = len(contents)
    return [sparse_parse_single_row(row_bytes) for row_bytes in contents[start:end]]


def float_to_fp16_bytes(values: Any) -> bytes:
    return np.asarray(values, dtype=np.float32).astype("<f2").tobytes()


def fp16_bytes_to_floats(data: bytes) -> List[float]:
    return np.frombuffer(data, dtype="<f2").astype(np.float32).tolist()


def float_to_bf16_bytes(values: Any) -> bytes:
    # bfloat16 keeps the upper 16 bits of an IEEE float32, the mantissa is truncated
    bits = np.asarray(values, dtype="<f4").view("<u4") >> 16
    return bits.astype("<u2").tobytes()


def bf16_bytes_to_floats(data: bytes) -> List[float]:
    bits = np.frombuffer(data, dtype="<u2").astype("<u4") << 16
    return bits.view("<f4").tolist()


def float_to_fp16_bits(value: float) -> int:
    return int(np.array([value], dtype=np.float32).astype("<f2").view("<u2")[0])


def fp16_bits_to_float(bits: int) -> float:
    return float(np.array([bits], dtype="<u2").view("<f2").astype(np.float32)[0])


def float_to_bf16_bits(value: float) -> int:
    return int(np.array([value], dtype="<f4").view("<u4")[0] >> 16)


def bf16_bits_to_float(bits: int) -> float:
    return float((np.array([bits], dtype="<u4") << 16).view("<f4")[0])


def get_input_num_rows(entity: Any) -> int:
    return len(entity)


def convert_to_json(obj: object) -> bytes:
    def preprocess_numpy_types(v: Any) -> Any:
        if isinstance(v, np.ndarray):
            return v.tolist()
        if isinstance(v, np.bool_):
            return bool(v)
        if isinstance(v, np.integer):
            return int(v)
        if isinstance(v, np.floating):
            return float(v)
        if isinstance(v, dict):
            return {k: preprocess_numpy_types(item) for k, item in v.items()}
        if isinstance(v, (list, tuple)):
            return [preprocess_numpy_types(item) for item in v]
        return v

    if isinstance(obj, str):
        try:
            orjson.loads(obj)
        except orjson.JSONDecodeError as e:
            raise DataNotMatchException(message=f"Invalid JSON string: {e!s}") from e
        return obj.encode(Config.EncodeProtocol)

    if isinstance(obj, dict):
        for k in obj:
            if not isinstance(k, str):
                raise DataNotMatchException(message=ExceptionsMessage.JSONKeyMustBeStr)

    return orjson.dumps(preprocess_numpy_types(obj))


def parse_json(data: Any) -> Any:
    if data is None:
        return None
    return orjson.loads(data)


def _flatten_dense(field_name: str, dtype: DataType, rows: List[Any], dim: int):
    if dtype == DataType.FLOAT_VECTOR:
        flat = []
        for row in rows:
            if len(row) != dim:
                raise DataNotMatchException(
                    message=f"field {field_name!r} expects {dim} dim vectors, got {len(row)}"
                )
            flat.extend(float(x) for x in row)
        return flat
    return b"".join(rows)


def _split_dense(dtype: DataType, data: Any, dim: int) -> List[Any]:
    if dtype == DataType.FLOAT_VECTOR:
        if not dim:
            return []
        return [list(data[i : i + dim]) for i in range(0, len(data), dim)]

    if dtype == DataType.BINARY_VECTOR:
        row_bytes = dim // 8
    elif dtype in (DataType.FLOAT16_VECTOR, DataType.BFLOAT16_VECTOR):
        row_bytes = dim * 2
    else:
        row_bytes = dim
    if not row_bytes:
        return []
    return [bytes(data[i : i + row_bytes]) for i in range(0, len(data), row_bytes)]


def _expand_valid(values: List[Any], valid_data: List[bool]) -> List[Any]:
    # vector columns only carry the valid rows on the wire
    if not valid_data or len(values) == len(valid_data):
        return values
    it = iter(values)
    return [next(it) if valid else None for valid in valid_data]


def field_data_from_proto(field: messages.FieldData) -> FieldData:
    """Decode a wire column into a ``FieldData``."""
    dtype = DataType(field.type)
    valid_data = list(field.valid_data) if field.valid_data else None

    if dtype == DataType.ARRAY_OF_STRUCT:
        subs = [field_data_from_proto(sub) for sub in field.fields]
        return FieldData(field.field_name, dtype, subs)

    if dtype == DataType.JSON:
        values = [parse_json(v) if v is not None else None for v in field.data]
    elif dtype == DataType.SPARSE_FLOAT_VECTOR:
        values = _expand_valid(sparse_proto_to_rows(list(field.data)), valid_data)
    elif dtype in _VECTOR_WIRE_TYPES:
        values = _expand_valid(_split_dense(dtype, field.data, field.dim), valid_data)
    elif dtype == DataType.ARRAY:
        values = [list(v) if v is not None else None for v in field.data]
    elif dtype in _SCALAR_WIRE_TYPES:
        values = list(field.data)
    else:
        raise DataTypeNotSupportException(message=ExceptionsMessage.DataTypeNotSupport % dtype.name)

    if valid_data:
        values = [v if valid else None for v, valid in zip(values, valid_data)]
    return FieldData(
        field.field_name, dtype, values, field.dim, DataType(field.element_type), valid_data
    )


def field_data_to_proto(column: FieldData) -> messages.FieldData:
    """Encode a ``FieldData`` into its wire column."""
    dtype = column.dtype
    wire = messages.FieldData(
        field_name=column.name,
        type=dtype,
        dim=column.dim,
        element_type=column.element_type,
        valid_data=list(column.valid_data),
    )

    if dtype == DataType.ARRAY_OF_STRUCT:
        wire.fields = [field_data_to_proto(sub) for sub in column.values]
        return wire

    rows = column.values
    if column.nullable and (dtype in _VECTOR_WIRE_TYPES or dtype == DataType.SPARSE_FLOAT_VECTOR):
        rows = [v for v, valid in zip(rows, column.valid_data) if valid]

    if dtype == DataType.JSON:
        wire.data = [convert_to_json(v) if v is not None else None for v in rows]
    elif dtype == DataType.SPARSE_FLOAT_VECTOR:
        wire.data = [sparse_row_to_bytes(v) for v in rows]
        wire.dim = max(
            (max(v.keys(), default=-1) + 1 for v in rows if isinstance(v, dict)),
            default=column.dim,
        )
    elif dtype in _VECTOR_WIRE_TYPES:
        wire.data = _flatten_dense(column.name, dtype, rows, column.dim)
    elif dtype == DataType.ARRAY:
        wire.data = [list(v) if v is not None else None for v in rows]
    else:
        wire.data = list(rows)
    return wire


def pack_vector_row(dtype: DataType, row: Any) -> Any:
    """Bring a user supplied vector row into the ``FieldData`` row layout of dtype."""
    if dtype == DataType.FLOAT_VECTOR:
        if isinstance(row, np.ndarray):
            return row.astype(np.float32).tolist()
        return [float(x) for x in row]
    if dtype == DataType.FLOAT16_VECTOR:
        if isinstance(row, bytes):
            return row
        return float_to_fp16_bytes(row)
    if dtype == DataType.BFLOAT16_VECTOR:
        if isinstance(row, bytes):
            return row
        return float_to_bf16_bytes(row)
    if dtype == DataType.INT8_VECTOR:
        if isinstance(row, bytes):
            return row
        return np.asarray(row, dtype=np.int8).tobytes()
    if dtype == DataType.BINARY_VECTOR:
        if isinstance(row, np.ndarray):
            return row.tobytes()
        return bytes(row)
    if dtype == DataType.SPARSE_FLOAT_VECTOR:
        if isinstance(row, dict):
            return {int(k): float(v) for k, v in row.items()}
        return {int(k): float(v) for k, v in row}
    raise DataTypeNotSupportException(message=ExceptionsMessage.DataTypeNotSupport % dtype.name)


def vector_dim(dtype: DataType, row: Any) -> int:
    if dtype == DataType.BINARY_VECTOR:
        return len(row) * 8
    if dtype in (DataType.FLOAT16_VECTOR, DataType.BFLOAT16_VECTOR):
        return len(row) // 2
    if dtype == DataType.SPARSE_FLOAT_VECTOR:
        return max(row.keys(), default=-1) + 1
    return len(row)


def vectors_to_placeholder(dtype: DataType, vectors: List[Any]) -> messages.FieldData:
    """Build the placeholder column carrying the search target vectors."""
    if not vectors:
        raise ParamError(message=ExceptionsMessage.EmptySearchVectors)
    rows = [pack_vector_row(dtype, v) for v in vectors]
    if dtype == DataType.SPARSE_FLOAT_VECTOR:
        dim = max(vector_dim(dtype, r) for r in rows)
    else:
        dim = vector_dim(dtype, rows[0])
    return field_data_to_proto(FieldData("", dtype, rows, dim))


def rows_to_fields_data(
    rows: List[Dict[str, Any]], fields: List[messages.FieldSchema]
) -> List[messages.FieldData]:
    """Turn row dicts into wire columns following the collection fields.

    Auto id primary keys are skipped, a missing value is a null row.
    """
    if not rows:
        raise ParamError(message="data for insert/upsert cannot be empty")

    columns = []
    for field in fields:
        if field.is_primary_key and field.auto_id:
            continue
        dtype = DataType(field.data_type)
        values, valid = [], []
        for row in rows:
            if not isinstance(row, dict):
                raise DataNotMatchException(
                    message=f"each row must be a dict, got {type(row).__name__}"
                )
            v = row.get(field.name)
            valid.append(v is not None)
            if v is None:
                values.append(None)
            elif dtype in _SCALAR_WIRE_TYPES or dtype in (DataType.JSON, DataType.ARRAY):
                values.append(v)
            else:
                values.append(pack_vector_row(dtype, v))
        if not all(valid) and not field.nullable:
            raise DataNotMatchException(
                message=f"field {field.name!r} is not nullable, but some rows miss it"
            )
        dim = field.dim
        if not dim and (dtype in _VECTOR_WIRE_TYPES or dtype == DataType.SPARSE_FLOAT_VECTOR):
            first = next((v for v in values if v is not None), None)
            dim = vector_dim(dtype, first) if first is not None else 0
        column = FieldData(
            field.name,
            dtype,
            values,
            dim,
            element_type=field.element_type,
            valid_data=valid if field.nullable else None,
        )
        columns.append(field_data_to_proto(column))
    return columns
