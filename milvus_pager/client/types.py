import logging
from enum import IntEnum
from typing import Union

from milvus_pager.exceptions import MilvusException

logger = logging.getLogger(__name__)


class DataType(IntEnum):
    """
    String of DataType is str of its value, e.g.: str(DataType.BOOL) == "1"
    """

    NONE = 0
    BOOL = 1
    INT8 = 2
    INT16 = 3
    INT32 = 4
    INT64 = 5

    FLOAT = 10
    DOUBLE = 11

    STRING = 20
    VARCHAR = 21
    ARRAY = 22
    JSON = 23

    BINARY_VECTOR = 100
    FLOAT_VECTOR = 101
    FLOAT16_VECTOR = 102
    BFLOAT16_VECTOR = 103
    SPARSE_FLOAT_VECTOR = 104
    INT8_VECTOR = 105

    ARRAY_OF_STRUCT = 200

    UNKNOWN = 999

    def __str__(self) -> str:
        return str(self.value)


SCALAR_TYPES = (
    DataType.BOOL,
    DataType.INT8,
    DataType.INT16,
    DataType.INT32,
    DataType.INT64,
    DataType.FLOAT,
    DataType.DOUBLE,
    DataType.STRING,
    DataType.VARCHAR,
    DataType.JSON,
)

DENSE_VECTOR_TYPES = (
    DataType.BINARY_VECTOR,
    DataType.FLOAT_VECTOR,
    DataType.FLOAT16_VECTOR,
    DataType.BFLOAT16_VECTOR,
    DataType.INT8_VECTOR,
)

PRIMARY_KEY_TYPES = (DataType.INT64, DataType.VARCHAR)


class ConsistencyLevel(IntEnum):
    Strong = 0
    Session = 1
    Bounded = 2
    Eventually = 3
    Customized = 4


def get_consistency_level(consistency_level: Union[str, int]):
    if isinstance(consistency_level, int):
        if consistency_level in ConsistencyLevel.__members__.values():
            return ConsistencyLevel(consistency_level)
        raise MilvusException(message=f"invalid consistency level: {consistency_level}")
    if isinstance(consistency_level, str):
        try:
            return ConsistencyLevel[consistency_level]
        except KeyError as e:
            raise MilvusException(message=f"invalid consistency level: {consistency_level}") from e
    raise MilvusException(message="consistency level must be str or int")


class PrimaryKeySchema:
    """Name and data type of the primary key field, enough to build cursor filters."""

    def __init__(self, name: str, dtype: DataType = DataType.INT64) -> None:
        if dtype not in PRIMARY_KEY_TYPES:
            raise MilvusException(
                message=f"Primary key type must be DataType.INT64 or DataType.VARCHAR, got {dtype}"
            )
        self.name = name
        self.dtype = DataType(dtype)

    @property
    def is_varchar(self) -> bool:
        return self.dtype == DataType.VARCHAR

    def __eq__(self, other: object) -> bool:
        return (
            isinstance(other, PrimaryKeySchema)
            and self.name == other.name
            and self.dtype == other.dtype
        )

    def __repr__(self) -> str:
        return f"PrimaryKeySchema(name={self.name!r}, dtype={self.dtype.name})"
