import copy
from typing import Any, Dict, List, Optional, Union

from milvus_pager.exceptions import ExceptionsMessage, ParamError

from .constants import (
    EF,
    MAX_BATCH_SIZE,
    METRIC_TYPE,
    PARAMS,
    RADIUS,
    RANGE_FILTER,
    UNLIMITED,
)
from .types import ConsistencyLevel, DataType, PrimaryKeySchema


class DQLArguments:
    """Fields shared by every read request: where to read, what to return, how fresh."""

    def __init__(
        self,
        collection_name: str,
        filter: Optional[str] = None,
        output_fields: Optional[List[str]] = None,
        partition_names: Optional[List[str]] = None,
        consistency_level: Optional[Union[str, int, ConsistencyLevel]] = None,
        database_name: str = "",
        timeout: Optional[float] = None,
    ):
        if not isinstance(collection_name, str) or not collection_name:
            raise ParamError(message=ExceptionsMessage.CollectionNameEmpty)
        if filter is not None and not isinstance(filter, str):
            raise ParamError(message=f"filter must be a str, got {type(filter)}")
        self.collection_name = collection_name
        self.filter = filter or ""
        self.output_fields = list(output_fields) if output_fields else []
        self.partition_names = list(partition_names) if partition_names else []
        self.consistency_level = consistency_level
        self.database_name = database_name or ""
        self.timeout = timeout

    def copy(self):
        return copy.deepcopy(self)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.__dict__})"


class QueryArguments(DQLArguments):
    def __init__(
        self,
        collection_name: str,
        filter: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        ignore_growing: bool = False,
        **kwargs,
    ):
        super().__init__(collection_name, filter=filter, **kwargs)
        self.limit = limit
        self.offset = offset
        self.ignore_growing = ignore_growing


class QueryIteratorArguments(QueryArguments):
    """Query arguments for paging through a collection ``batch_size`` rows at a time.

    ``limit`` of -1 means unlimited. The iterator keeps the caller's ``limit`` and ``offset``
    to itself and reuses ``limit`` of its working copy as the size of each request.
    """

    def __init__(
        self,
        collection_name: str,
        batch_size: int = 1000,
        limit: int = UNLIMITED,
        offset: int = 0,
        pk_schema: Optional[PrimaryKeySchema] = None,
        collection_id: int = 0,
        reduce_stop_for_best: bool = False,
        **kwargs,
    ):
        super().__init__(collection_name, limit=limit, offset=offset, **kwargs)
        self.batch_size = batch_size
        self.pk_schema = pk_schema
        self.collection_id = collection_id
        self.reduce_stop_for_best = reduce_stop_for_best

    def validate(self):
        check_batch_size(self.batch_size)
        check_limit(self.limit)
        if self.offset is None or self.offset < 0:
            raise ParamError(message=ExceptionsMessage.OffsetInvalid % self.offset)
        if self.pk_schema is None:
            raise ParamError(message="primary key schema is required for query iterator")


class SearchArguments(DQLArguments):
    """Search arguments.

    ``search_params`` follows the usual layout:
    ``{"metric_type": "L2", "params": {"nprobe": 16, "radius": 1.0, "range_filter": 0.1}}``.
    """

    def __init__(
        self,
        collection_name: str,
        data: Optional[List[Any]] = None,
        anns_field: Optional[str] = None,
        search_params: Optional[Dict] = None,
        limit: int = 10,
        offset: int = 0,
        round_decimal: int = -1,
        vector_type: DataType = DataType.FLOAT_VECTOR,
        ignore_growing: bool = False,
        **kwargs,
    ):
        super().__init__(collection_name, **kwargs)
        self.data = list(data) if data is not None else []
        self.anns_field = anns_field or ""
        self.search_params = copy.deepcopy(search_params) if search_params else {}
        if not isinstance(self.search_params.get(PARAMS, {}), dict):
            raise ParamError(
                message=f"Search params must be a dict, got {type(self.search_params[PARAMS])}"
            )
        self.limit = limit
        self.offset = offset
        self.round_decimal = round_decimal
        self.vector_type = DataType(vector_type)
        self.ignore_growing = ignore_growing

    @property
    def metric_type(self) -> str:
        return self.search_params.get(METRIC_TYPE) or ""

    @property
    def params(self) -> Dict:
        return self.search_params.setdefault(PARAMS, {})

    def get_param(self, key: str) -> Optional[Any]:
        return self.params.get(key)


class SearchIteratorArguments(SearchArguments):
    """Search arguments for paging through the hits of one target vector."""

    def __init__(
        self,
        collection_name: str,
        data: Optional[List[Any]] = None,
        batch_size: int = 1000,
        limit: int = UNLIMITED,
        pk_schema: Optional[PrimaryKeySchema] = None,
        collection_id: int = 0,
        **kwargs,
    ):
        super().__init__(collection_name, data=data, limit=limit, **kwargs)
        self.batch_size = batch_size
        self.pk_schema = pk_schema
        self.collection_id = collection_id

    @property
    def radius(self) -> Optional[float]:
        return self.get_param(RADIUS)

    @radius.setter
    def radius(self, value: float):
        self.params[RADIUS] = value

    @property
    def range_filter(self) -> Optional[float]:
        return self.get_param(RANGE_FILTER)

    @range_filter.setter
    def range_filter(self, value: float):
        self.params[RANGE_FILTER] = value

    @property
    def ef(self) -> Optional[int]:
        return self.get_param(EF)

    def validate(self):
        check_batch_size(self.batch_size)
        check_limit(self.limit)
        if len(self.data) > 1:
            raise ParamError(message=ExceptionsMessage.SingleVectorOnly)
        if len(self.data) == 0:
            raise ParamError(message=ExceptionsMessage.EmptySearchVectors)
        if self.pk_schema is None:
            raise ParamError(message="primary key schema is required for search iterator")


def check_batch_size(batch_size: int):
    if not isinstance(batch_size, int) or isinstance(batch_size, bool) or batch_size <= 0:
        raise ParamError(message=ExceptionsMessage.BatchSizeInvalid)
    if batch_size > MAX_BATCH_SIZE:
        raise ParamError(message=ExceptionsMessage.BatchSizeTooLarge % MAX_BATCH_SIZE)


def check_limit(limit: int):
    if not isinstance(limit, int) or isinstance(limit, bool) or limit < UNLIMITED:
        raise ParamError(message=ExceptionsMessage.LimitInvalid % limit)
