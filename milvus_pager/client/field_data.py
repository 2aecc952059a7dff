"""Typed, named columns of values.

Every result page handled by the iterators is a list of ``FieldData`` columns. Slicing and
merging pages is done column by column with ``copy`` and ``append``; both produce value
copies so that a page kept in a cache is never changed by the page handed to the caller.
"""

import copy
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from milvus_pager.exceptions import (
    DataNotMatchException,
    DataTypeNotSupportException,
    ExceptionsMessage,
    ParamError,
    UnknownErrorException,
)

from .types import DataType


def _copy_scalar(v: Any) -> Any:
    return v


def _copy_list(v: Any) -> Any:
    return None if v is None else list(v)


def _copy_dict(v: Any) -> Any:
    return None if v is None else dict(v)


def _copy_deep(v: Any) -> Any:
    return copy.deepcopy(v)


# one entry per supported DataType, a type missing here is rejected at construction
_ROW_COPIERS: Dict[DataType, Callable[[Any], Any]] = {
    DataType.BOOL: _copy_scalar,
    DataType.INT8: _copy_scalar,
    DataType.INT16: _copy_scalar,
    DataType.INT32: _copy_scalar,
    DataType.INT64: _copy_scalar,
    DataType.FLOAT: _copy_scalar,
    DataType.DOUBLE: _copy_scalar,
    DataType.STRING: _copy_scalar,
    DataType.VARCHAR: _copy_scalar,
    DataType.JSON: _copy_deep,
    DataType.ARRAY: _copy_list,
    DataType.FLOAT_VECTOR: _copy_list,
    DataType.BINARY_VECTOR: _copy_scalar,
    DataType.FLOAT16_VECTOR: _copy_scalar,
    DataType.BFLOAT16_VECTOR: _copy_scalar,
    DataType.INT8_VECTOR: _copy_scalar,
    DataType.SPARSE_FLOAT_VECTOR: _copy_dict,
}


class FieldData:
    """A named column.

    ``values`` holds one entry per row:
      - scalars and JSON: the python value
      - ARRAY: a list of ``element_type`` values
      - FLOAT_VECTOR: a list of floats
      - BINARY/FLOAT16/BFLOAT16/INT8 vectors: the packed bytes of the row
      - SPARSE_FLOAT_VECTOR: a dict of index -> value
      - ARRAY_OF_STRUCT: ``values`` is a list of ARRAY sub columns sharing the row count

    ``valid_data`` marks null rows of a nullable column, null rows hold ``None``.
    """

    def __init__(
        self,
        name: str,
        dtype: DataType,
        values: Optional[List[Any]] = None,
        dim: int = 0,
        element_type: DataType = DataType.NONE,
        valid_data: Optional[List[bool]] = None,
    ) -> None:
        dtype = DataType(dtype)
        if dtype != DataType.ARRAY_OF_STRUCT and dtype not in _ROW_COPIERS:
            raise DataTypeNotSupportException(
                message=ExceptionsMessage.DataTypeNotSupport % dtype.name
            )
        self._name = name
        self._dtype = dtype
        self._values = list(values) if values is not None else []
        self._dim = dim
        self._element_type = DataType(element_type)
        self._valid_data = list(valid_data) if valid_data else []

        if self._valid_data and len(self._valid_data) != len(self._values):
            raise ParamError(
                message=f"field {name!r}: valid_data has {len(self._valid_data)} rows, "
                f"but the column has {len(self._values)} rows"
            )
        if dtype == DataType.ARRAY_OF_STRUCT:
            self._check_sub_fields()

    def _check_sub_fields(self):
        counts = {sub.row_count for sub in self._values}
        if len(counts) > 1:
            raise UnknownErrorException(
                message=f"sub fields of struct field {self._name!r} have different row counts"
            )

    @property
    def name(self) -> str:
        return self._name

    @property
    def dtype(self) -> DataType:
        return self._dtype

    @property
    def dim(self) -> int:
        return self._dim

    @property
    def element_type(self) -> DataType:
        return self._element_type

    @property
    def values(self) -> List[Any]:
        return self._values

    @property
    def valid_data(self) -> List[bool]:
        return self._valid_data

    @property
    def nullable(self) -> bool:
        return len(self._valid_data) > 0

    @property
    def row_count(self) -> int:
        if self._dtype == DataType.ARRAY_OF_STRUCT:
            return self._values[0].row_count if self._values else 0
        return len(self._values)

    def __len__(self) -> int:
        return self.row_count

    def is_null(self, i: int) -> bool:
        return self.nullable and not self._valid_data[i]

    def value(self, i: int) -> Any:
        """Return the value of row i in its user facing form."""
        if self.is_null(i):
            return None
        if self._dtype == DataType.ARRAY_OF_STRUCT:
            subs = {sub.name: sub.value(i) for sub in self._values}
            length = max((len(v) for v in subs.values() if v is not None), default=0)
            return [
                {name: (v[k] if v is not None else None) for name, v in subs.items()}
                for k in range(length)
            ]
        v = self._values[i]
        if self._dtype == DataType.FLOAT16_VECTOR:
            return np.frombuffer(v, dtype="<f2").astype(np.float32).tolist()
        if self._dtype == DataType.BFLOAT16_VECTOR:
            bits = np.frombuffer(v, dtype="<u2").astype("<u4") << 16
            return bits.view("<f4").tolist()
        if self._dtype == DataType.INT8_VECTOR:
            return np.frombuffer(v, dtype=np.int8).tolist()
        return v

    def copy(self, start: int = 0, end: Optional[int] = None) -> "FieldData":
        """Value copy of rows [start, end)."""
        count = self.row_count
        end = count if end is None else min(end, count)
        if start < 0 or start > end:
            raise ParamError(message=ExceptionsMessage.IllegalCopyRange % (start, end, count))

        if self._dtype == DataType.ARRAY_OF_STRUCT:
            values = [sub.copy(start, end) for sub in self._values]
        else:
            copier = _ROW_COPIERS[self._dtype]
            values = [copier(v) for v in self._values[start:end]]
        valid_data = self._valid_data[start:end] if self.nullable else None
        return FieldData(self._name, self._dtype, values, self._dim, self._element_type, valid_data)

    def append(self, other: "FieldData"):
        """Append the rows of other to this column."""
        if (
            other.name != self._name
            or other.dtype != self._dtype
            or other.element_type != self._element_type
        ):
            raise DataNotMatchException(
                message=ExceptionsMessage.FieldDataNotMatch
                % (other.name, other.dtype.name, self._name, self._dtype.name)
            )
        if self._dim and other.dim and self._dim != other.dim:
            raise DataNotMatchException(
                message=f"Cannot append {other.dim} dim vectors "
                f"to {self._dim} dim field {self._name!r}"
            )
        if other.row_count == 0:
            return

        if self._dtype == DataType.ARRAY_OF_STRUCT:
            if self.row_count == 0 and not self._values:
                self._values = [sub.copy() for sub in other.values]
            else:
                mine = {sub.name: sub for sub in self._values}
                for sub in other.values:
                    if sub.name not in mine:
                        raise DataNotMatchException(
                            message=f"sub field {sub.name!r} not found "
                            f"in struct field {self._name!r}"
                        )
                    mine[sub.name].append(sub)
            return

        before = len(self._values)
        copier = _ROW_COPIERS[self._dtype]
        self._values.extend(copier(v) for v in other.values)
        if self.nullable or other.nullable:
            mine = self._valid_data if self.nullable else [True] * before
            theirs = other.valid_data if other.nullable else [True] * other.row_count
            self._valid_data = mine + list(theirs)
        if not self._dim:
            self._dim = other.dim

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FieldData):
            return False
        return (
            self._name == other.name
            and self._dtype == other.dtype
            and self._element_type == other.element_type
            and self._values == other.values
            and self._valid_data == other.valid_data
        )

    def __repr__(self) -> str:
        return (
            f"FieldData(name={self._name!r}, dtype={self._dtype.name}, "
            f"row_count={self.row_count})"
        )


def get_row_count(fields: List[FieldData]) -> int:
    """Row count of a page, taken from the first non empty column."""
    for f in fields:
        if f is not None and f.row_count > 0:
            return f.row_count
    return 0


def check_row_count(fields: List[FieldData]) -> int:
    counts = {f.name: f.row_count for f in fields if f is not None}
    if len(set(counts.values())) > 1:
        raise UnknownErrorException(
            message=f"{ExceptionsMessage.FieldsRowCountInconsistent}: {counts}"
        )
    return get_row_count(fields)


def copy_fields_data(
    fields: List[FieldData], start: int, end: Optional[int] = None
) -> List[FieldData]:
    return [f.copy(start, end) for f in fields]


def append_fields_data(src: List[FieldData], target: List[FieldData]) -> List[FieldData]:
    """Append the columns of src into target, matching columns by name.

    An empty target adopts copies of the src columns.
    """
    if not target:
        return [f.copy() for f in src]

    by_name = {f.name: f for f in target}
    for f in src:
        if f.name not in by_name:
            raise DataNotMatchException(message=f"field {f.name!r} not found in target fields")
        by_name[f.name].append(f)
    return target
