from typing import Any, Dict, List, Optional

from . import entity_helper
from .field_data import FieldData, check_row_count, copy_fields_data, get_row_count


class QueryResults:
    """Columns of a query page plus the names the caller asked for."""

    def __init__(
        self,
        fields: Optional[List[FieldData]] = None,
        output_names: Optional[List[str]] = None,
        session_ts: int = 0,
    ):
        self._fields = list(fields) if fields else []
        self._output_names = list(output_names) if output_names else []
        self._session_ts = session_ts

    @classmethod
    def from_proto(cls, raw: Any, output_names: Optional[List[str]] = None) -> "QueryResults":
        fields = [entity_helper.field_data_from_proto(f) for f in raw.fields_data]
        check_row_count(fields)
        return cls(fields, output_names or list(raw.output_fields), raw.session_ts)

    @property
    def fields(self) -> List[FieldData]:
        return self._fields

    @property
    def output_names(self) -> List[str]:
        return self._output_names

    @property
    def session_ts(self) -> int:
        return self._session_ts

    @property
    def row_count(self) -> int:
        return get_row_count(self._fields)

    def __len__(self) -> int:
        return self.row_count

    def get_field(self, name: str) -> Optional[FieldData]:
        for f in self._fields:
            if f.name == name:
                return f
        return None

    def copy(self, start: int, end: Optional[int] = None) -> "QueryResults":
        return QueryResults(copy_fields_data(self._fields, start, end), self._output_names)

    def rows(self) -> List[Dict[str, Any]]:
        return [{f.name: f.value(i) for f in self._fields} for i in range(self.row_count)]

    def __str__(self) -> str:
        return f"QueryResults(row_count={self.row_count}, fields={[f.name for f in self._fields]})"

    __repr__ = __str__


class MutationResult:
    def __init__(self, raw: Any):
        self._raw = raw
        self._primary_keys = []
        self._insert_cnt = 0
        self._delete_cnt = 0
        self._upsert_cnt = 0
        self._timestamp = 0
        self._succ_index = []
        self._err_index = []

        self._pack(raw)

    @property
    def primary_keys(self):
        return self._primary_keys

    @property
    def insert_count(self):
        return self._insert_cnt

    @property
    def delete_count(self):
        return self._delete_cnt

    @property
    def upsert_count(self):
        return self._upsert_cnt

    @property
    def timestamp(self):
        return self._timestamp

    @property
    def succ_count(self):
        return len(self._succ_index)

    @property
    def err_count(self):
        return len(self._err_index)

    @property
    def succ_index(self):
        return self._succ_index

    @property
    def err_index(self):
        return self._err_index

    def __str__(self):
        return (
            f"(insert count: {self._insert_cnt}, delete count: {self._delete_cnt}, "
            f"upsert count: {self._upsert_cnt}, timestamp: {self._timestamp}, "
            f"success count: {self.succ_count}, err count: {self.err_count})"
        )

    __repr__ = __str__

    def _pack(self, raw: Any):
        if raw.ids.int_id is not None:
            self._primary_keys = list(raw.ids.int_id)
        elif raw.ids.str_id is not None:
            self._primary_keys = list(raw.ids.str_id)

        self._insert_cnt = raw.insert_cnt
        self._delete_cnt = raw.delete_cnt
        self._upsert_cnt = raw.upsert_cnt
        self._timestamp = raw.timestamp
        self._succ_index = list(raw.succ_index)
        self._err_index = list(raw.err_index)
