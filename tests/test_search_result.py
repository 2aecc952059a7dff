import pytest

from milvus_pager.client.entity_helper import field_data_to_proto
from milvus_pager.client.field_data import FieldData
from milvus_pager.client.messages import IDs, SearchIteratorV2Results, SearchResultData
from milvus_pager.client.search_result import Hit, SearchResult, SingleResult, resolve_score_name
from milvus_pager.client.types import DataType
from milvus_pager.exceptions import UnknownErrorException


def result_data(**kwargs) -> SearchResultData:
    defaults = {
        "num_queries": 2,
        "top_k": 3,
        "fields_data": [FieldData("age", DataType.INT64, [10, 20, 30, 40])],
        "scores": [0.1, 0.2, 0.3, 0.4],
        "ids": IDs(int_id=[1, 2, 3, 4]),
        "topks": [3, 1],
        "output_fields": ["age"],
        "primary_field_name": "id",
    }
    defaults.update(kwargs)
    data = SearchResultData(**defaults)
    # columns are given decoded, encode them like the server does
    data.fields_data = [field_data_to_proto(f) for f in data.fields_data]
    return data


class TestResolveScoreName:
    @pytest.mark.parametrize(
        "names, expected",
        [(["id", "age"], "score"), (["id", "score"], "_score"), (["score", "_score"], "__score")],
    )
    def test_resolve(self, names, expected):
        assert resolve_score_name(names) == expected


class TestSearchResult:
    def test_split_per_query(self):
        res = SearchResult(result_data(), session_ts=5)
        assert len(res) == 2
        assert res[0].ids == [1, 2, 3]
        assert res[0].scores == pytest.approx([0.1, 0.2, 0.3])
        assert res[1].ids == [4]
        assert res[1].get_field("age").values == [40]
        assert res[0].pk_name == "id"
        assert res[0].score_name == "score"
        assert res[0].output_names == ["age"]
        assert res.get_session_ts() == 5
        assert res.get_search_iterator_v2_results_info() == SearchIteratorV2Results()

    def test_pk_name_fallback(self):
        res = SearchResult(result_data(primary_field_name=""), pk_name="my_id")
        assert res[0].pk_name == "my_id"

        res = SearchResult(result_data(primary_field_name=""))
        assert res[0].pk_name == "pk"

    def test_varchar_ids(self):
        res = SearchResult(result_data(ids=IDs(str_id=["a", "b", "c", "d"])))
        assert res[0].ids == ["a", "b", "c"]
        assert res[0].is_integer_id is False

    def test_score_collides_with_field(self):
        data = result_data(
            fields_data=[FieldData("score", DataType.INT64, [1, 2, 3, 4])],
            output_fields=["score"],
        )
        res = SearchResult(data)
        assert res[0].score_name == "_score"
        assert res[0].get_field("score").values == [1, 2, 3]

    def test_round_decimal(self):
        res = SearchResult(result_data(scores=[0.123456, 0.2, 0.3, 0.4]), round_decimal=2)
        assert res[0].scores[0] == 0.12

    def test_v2_info(self):
        info = SearchIteratorV2Results(token="t", last_bound=0.5)
        res = SearchResult(result_data(search_iterator_v2_results=info))
        assert res.get_search_iterator_v2_results_info().token == "t"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"scores": [0.1, 0.2, 0.3]},
            {"topks": [3, 2]},
            {"fields_data": [FieldData("age", DataType.INT64, [1])]},
        ],
    )
    def test_inconsistent(self, kwargs):
        with pytest.raises(UnknownErrorException):
            SearchResult(result_data(**kwargs))

    def test_empty(self):
        data = result_data(
            fields_data=[], scores=[], ids=IDs(int_id=[]), topks=[0, 0], output_fields=[]
        )
        res = SearchResult(data)
        assert [len(r) for r in res] == [0, 0]
        assert res[0].ids == []


class TestSingleResult:
    def single(self) -> SingleResult:
        return SearchResult(result_data())[0]

    def test_copy_and_append(self):
        first = self.single()
        head = first.copy(0, 2)
        tail = first.copy(2, 3)
        assert head.ids == [1, 2]

        head.append(tail)
        assert head.ids == [1, 2, 3]
        assert head.get_field("age").values == [10, 20, 30]
        assert first.ids == [1, 2, 3]

    def test_append_into_empty(self):
        empty = SingleResult("id", "score")
        assert empty.row_count == 0
        empty.append(self.single())
        assert empty.ids == [1, 2, 3]

    def test_rows(self):
        hits = self.single().rows()
        assert len(hits) == 3
        hit = hits[0]
        assert hit.id == 1
        assert hit.distance == pytest.approx(0.1)
        assert hit["age"] == 10
        assert hit.fields == {"age": 10}
        assert hit.get("missing", "x") == "x"


class TestHit:
    def test_lookup(self):
        h = Hit({"my_id": 1, "distance": 0.3, "entity": {"desc": "a"}}, pk_name="my_id")
        assert h["my_id"] == 1
        assert h["desc"] == "a"
        assert h.id == 1
        with pytest.raises(KeyError):
            h["nope"]
