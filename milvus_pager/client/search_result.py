from collections import UserDict
from typing import Any, Dict, List, Optional, Union

from milvus_pager.exceptions import ExceptionsMessage, UnknownErrorException

from . import entity_helper
from .constants import DEFAULT_PK_NAME, SCORE_FIELD_NAME
from .field_data import (
    FieldData,
    append_fields_data,
    check_row_count,
    copy_fields_data,
    get_row_count,
)
from .messages import SearchIteratorV2Results, SearchResultData
from .types import DataType


def resolve_score_name(field_names: List[str]) -> str:
    """``score``, prefixed with ``_`` until it no longer collides with a field name."""
    name = SCORE_FIELD_NAME
    names = set(field_names)
    while name in names:
        name = "_" + name
    return name


class SingleResult:
    """The hits of one target vector, kept as columns.

    ``fields`` always holds the primary key column and the score column once a row exists,
    followed by the requested output fields.
    """

    def __init__(
        self,
        pk_name: str,
        score_name: str,
        fields: Optional[List[FieldData]] = None,
        output_names: Optional[List[str]] = None,
    ):
        self._pk_name = pk_name
        self._score_name = score_name
        self._fields = list(fields) if fields else []
        self._output_names = list(output_names) if output_names else []

    @property
    def pk_name(self) -> str:
        return self._pk_name

    @property
    def score_name(self) -> str:
        return self._score_name

    @property
    def fields(self) -> List[FieldData]:
        return self._fields

    @property
    def output_names(self) -> List[str]:
        return self._output_names

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

    @property
    def ids(self) -> List[Union[int, str]]:
        pk = self.get_field(self._pk_name)
        return list(pk.values) if pk is not None else []

    @property
    def scores(self) -> List[float]:
        score = self.get_field(self._score_name)
        return list(score.values) if score is not None else []

    @property
    def is_integer_id(self) -> bool:
        pk = self.get_field(self._pk_name)
        return pk is None or pk.dtype == DataType.INT64

    def copy(self, start: int, end: int) -> "SingleResult":
        return SingleResult(
            self._pk_name,
            self._score_name,
            copy_fields_data(self._fields, start, end),
            self._output_names,
        )

    def append(self, other: "SingleResult"):
        self._fields = append_fields_data(other.fields, self._fields)

    def rows(self) -> List["Hit"]:
        entity_fields = [
            f for f in self._fields if f.name not in (self._pk_name, self._score_name)
        ]
        ids, scores = self.ids, self.scores
        return [
            Hit(
                {
                    self._pk_name: ids[i],
                    "distance": scores[i],
                    "entity": {f.name: f.value(i) for f in entity_fields},
                },
                pk_name=self._pk_name,
            )
            for i in range(self.row_count)
        ]

    def __str__(self) -> str:
        return (
            f"SingleResult(pk_name={self._pk_name!r}, score_name={self._score_name!r}, "
            f"row_count={self.row_count})"
        )

    __repr__ = __str__


class SearchResult(list):
    """A list of ``SingleResult``, one for each target vector.

    Examples:
        >>> res = client.search("coll", data=[[0.1, 0.2]], limit=3)
        >>> res[0].ids
        [5, 1, 9]
        >>> res[0].rows()[0]
        {"id": 5, "distance": 0.02, "entity": {"name": "a"}}
    """

    def __init__(
        self,
        res: SearchResultData,
        pk_name: str = "",
        output_names: Optional[List[str]] = None,
        round_decimal: Optional[int] = None,
        session_ts: Optional[int] = 0,
    ):
        super().__init__(self._parse_search_result_data(res, pk_name, output_names, round_decimal))

        # iterator related
        self._session_ts = session_ts
        self._search_iterator_v2_results = (
            res.search_iterator_v2_results or SearchIteratorV2Results()
        )

    def __str__(self) -> str:
        """Only print at most 10 results"""
        reminder = f" ... and {len(self) - 10} results remaining" if len(self) > 10 else ""
        return f"data: {list(self[:10])}{reminder}"

    __repr__ = __str__

    @staticmethod
    def _parse_search_result_data(
        res: SearchResultData,
        pk_name: str,
        output_names: Optional[List[str]],
        round_decimal: Optional[int],
    ) -> List[SingleResult]:
        # old servers leave primary_field_name empty
        _pk_name = res.primary_field_name or pk_name or DEFAULT_PK_NAME

        if res.ids.int_id is not None:
            all_pks, pk_type = list(res.ids.int_id), DataType.INT64
        elif res.ids.str_id is not None:
            all_pks, pk_type = list(res.ids.str_id), DataType.VARCHAR
        else:
            all_pks, pk_type = [], DataType.INT64

        if isinstance(round_decimal, int) and round_decimal > 0:
            all_scores = [round(x, round_decimal) for x in res.scores]
        else:
            all_scores = list(res.scores)

        if len(all_pks) != len(all_scores) or sum(res.topks) != len(all_pks):
            raise UnknownErrorException(
                message=f"{ExceptionsMessage.FieldsRowCountInconsistent}: "
                f"{len(all_pks)} ids, {len(all_scores)} scores, topks {list(res.topks)}"
            )

        all_fields = [
            entity_helper.field_data_from_proto(f)
            for f in res.fields_data
            if f.field_name != _pk_name
        ]
        if all_fields and check_row_count(all_fields) != len(all_pks):
            raise UnknownErrorException(message=ExceptionsMessage.FieldsRowCountInconsistent)

        score_name = resolve_score_name([f.name for f in all_fields] + [_pk_name])
        names = output_names if output_names is not None else list(res.output_fields)

        data = []
        nq_thres = 0
        for topk in res.topks:
            start, end = nq_thres, nq_thres + topk
            fields = [
                FieldData(_pk_name, pk_type, all_pks[start:end]),
                FieldData(score_name, DataType.FLOAT, all_scores[start:end]),
            ]
            fields.extend(f.copy(start, end) for f in all_fields)
            data.append(SingleResult(_pk_name, score_name, fields, names))
            nq_thres += topk
        return data

    def get_session_ts(self):
        """Iterator related inner method"""
        return self._session_ts

    def get_search_iterator_v2_results_info(self):
        """Iterator related inner method"""
        return self._search_iterator_v2_results


class Hit(UserDict):
    """One search hit as a dict that can also reach into its entity

    Examples:
        >>> h = Hit({"my_id": 1, "distance": 0.3, "entity": {"desc": "a"}}, pk_name="my_id")
        >>> h["my_id"]
        1
        >>> h["desc"]
        "a"
    """

    def __init__(self, *args, pk_name: str = "", **kwargs):
        super().__init__(*args, **kwargs)

        self._pk_name = pk_name

    @property
    def id(self) -> Union[str, int]:
        return self.data.get(self._pk_name)

    @property
    def distance(self) -> float:
        return self.data.get("distance")

    @property
    def fields(self) -> Dict[str, Any]:
        return self.get("entity")

    def __getitem__(self, key: str):
        try:
            return self.data[key]
        except KeyError:
            pass
        return self.data["entity"][key]

    def get(self, key: Any, default: Any = None):
        try:
            return self.__getitem__(key)
        except KeyError:
            pass
        return default
