"""Wire messages exchanged with the Milvus service.

These mirror the subset of the Milvus protobuf contract that the paging layer reads and
writes. A transport stub receives the request objects and returns the response objects;
how they are serialized on the wire is up to the stub.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional

from .types import ConsistencyLevel, DataType


@dataclass
class Status:
    code: int = 0
    error_code: int = 0
    reason: str = ""


@dataclass
class KeyValuePair:
    key: str
    value: str


@dataclass
class FieldData:
    """A column as it travels on the wire.

    ``data`` layout depends on ``type``:
      - scalars: one python value per row, JSON rows are encoded bytes
      - ARRAY: one list per row
      - FLOAT_VECTOR: flat list of floats, ``dim`` floats per row
      - BINARY/FLOAT16/BFLOAT16/INT8 vectors: packed bytes
      - SPARSE_FLOAT_VECTOR: one packed bytes value per row
      - ARRAY_OF_STRUCT: ``data`` is unused, sub columns live in ``fields``
    """

    field_name: str
    type: DataType
    data: Any = field(default_factory=list)
    dim: int = 0
    element_type: DataType = DataType.NONE
    valid_data: List[bool] = field(default_factory=list)
    fields: List["FieldData"] = field(default_factory=list)
    is_dynamic: bool = False


@dataclass
class IDs:
    int_id: Optional[List[int]] = None
    str_id: Optional[List[str]] = None


@dataclass
class SearchIteratorV2Results:
    token: str = ""
    last_bound: float = 0.0


@dataclass
class SearchResultData:
    num_queries: int = 0
    top_k: int = 0
    fields_data: List[FieldData] = field(default_factory=list)
    scores: List[float] = field(default_factory=list)
    ids: IDs = field(default_factory=IDs)
    topks: List[int] = field(default_factory=list)
    output_fields: List[str] = field(default_factory=list)
    primary_field_name: str = ""
    search_iterator_v2_results: Optional[SearchIteratorV2Results] = None


@dataclass
class QueryRequest:
    collection_name: str
    db_name: str = ""
    expr: str = ""
    output_fields: List[str] = field(default_factory=list)
    partition_names: List[str] = field(default_factory=list)
    guarantee_timestamp: int = 0
    consistency_level: ConsistencyLevel = ConsistencyLevel.Bounded
    use_default_consistency: bool = False
    query_params: List[KeyValuePair] = field(default_factory=list)

    def get_param(self, key: str) -> Optional[str]:
        for kv in self.query_params:
            if kv.key == key:
                return kv.value
        return None


@dataclass
class QueryResults:
    status: Status = field(default_factory=Status)
    fields_data: List[FieldData] = field(default_factory=list)
    collection_name: str = ""
    output_fields: List[str] = field(default_factory=list)
    session_ts: int = 0


@dataclass
class SearchRequest:
    collection_name: str
    db_name: str = ""
    partition_names: List[str] = field(default_factory=list)
    dsl: str = ""
    placeholder_group: Optional[FieldData] = None
    nq: int = 0
    output_fields: List[str] = field(default_factory=list)
    search_params: List[KeyValuePair] = field(default_factory=list)
    guarantee_timestamp: int = 0
    consistency_level: ConsistencyLevel = ConsistencyLevel.Bounded
    use_default_consistency: bool = False

    def get_param(self, key: str) -> Optional[str]:
        for kv in self.search_params:
            if kv.key == key:
                return kv.value
        return None


@dataclass
class SearchResults:
    status: Status = field(default_factory=Status)
    results: SearchResultData = field(default_factory=SearchResultData)
    collection_name: str = ""
    session_ts: int = 0


@dataclass
class InsertRequest:
    collection_name: str
    db_name: str = ""
    partition_name: str = ""
    fields_data: List[FieldData] = field(default_factory=list)
    num_rows: int = 0


@dataclass
class UpsertRequest:
    collection_name: str
    db_name: str = ""
    partition_name: str = ""
    fields_data: List[FieldData] = field(default_factory=list)
    num_rows: int = 0


@dataclass
class DeleteRequest:
    collection_name: str
    db_name: str = ""
    partition_name: str = ""
    expr: str = ""


@dataclass
class MutationResult:
    status: Status = field(default_factory=Status)
    ids: IDs = field(default_factory=IDs)
    succ_index: List[int] = field(default_factory=list)
    err_index: List[int] = field(default_factory=list)
    insert_cnt: int = 0
    delete_cnt: int = 0
    upsert_cnt: int = 0
    timestamp: int = 0


@dataclass
class FieldSchema:
    name: str
    data_type: DataType
    is_primary_key: bool = False
    auto_id: bool = False
    dim: int = 0
    element_type: DataType = DataType.NONE
    nullable: bool = False


@dataclass
class CollectionSchema:
    name: str = ""
    fields: List[FieldSchema] = field(default_factory=list)
    enable_dynamic_field: bool = False


@dataclass
class DescribeCollectionRequest:
    collection_name: str
    db_name: str = ""


@dataclass
class DescribeCollectionResponse:
    status: Status = field(default_factory=Status)
    schema: CollectionSchema = field(default_factory=CollectionSchema)
    collection_id: int = 0
    collection_name: str = ""
    consistency_level: ConsistencyLevel = ConsistencyLevel.Bounded
    db_name: str = ""


@dataclass
class DropCollectionRequest:
    collection_name: str
    db_name: str = ""
