from unittest.mock import patch

import grpc
import pytest

from milvus_pager.client.arguments import QueryArguments, SearchArguments
from milvus_pager.client.grpc_handler import GrpcHandler
from milvus_pager.client.messages import Status
from milvus_pager.client.types import DataType, PrimaryKeySchema
from milvus_pager.exceptions import (
    DataSchemaMismatchException,
    ErrorCode,
    MilvusException,
    MilvusTimeoutException,
    ParamError,
    RpcFailedException,
)

from utils import MockGrpcError, int_pk_fields, int_rows


@pytest.fixture
def handler(stub, no_retry, registry):
    return GrpcHandler(stub, db_name="db", retry_setting=no_retry, ts_registry=registry)


@pytest.fixture
def coll(stub):
    stub.create_collection("coll", int_pk_fields())
    stub.load_rows("coll", int_rows(10))
    return "coll"


def row(pk: int) -> dict:
    return {"id": pk, "age": 1, "vec": [0.0, 0.0]}


class TestGrpcHandler:
    def test_stub_required(self):
        with pytest.raises(ParamError):
            GrpcHandler(None)

    def test_query(self, handler, coll, stub):
        res = handler.query(QueryArguments("coll", filter="id < 3", output_fields=["age"]))
        assert res.get_field("id").values == [0, 1, 2]
        assert res.get_field("age").values == [0, 1, 2]
        assert res.session_ts == stub.current_ts
        assert stub.calls("Query")[0].db_name == "db"

    def test_search(self, handler, coll):
        args = SearchArguments(
            "coll", data=[[0.0, 0.0]], limit=3, search_params={"metric_type": "L2"}
        )
        res = handler.search(args, pk_name="id")
        assert len(res) == 1
        assert res[0].ids == [0, 1, 2]
        assert res[0].scores == [0.0, 1.0, 4.0]

    def test_search_pk_name_for_old_servers(self, handler, coll, stub):
        stub.report_primary_field_name = False
        args = SearchArguments("coll", data=[[0.0, 0.0]], limit=1)
        assert handler.search(args, pk_name="id")[0].pk_name == "id"

    def test_rpc_timeout(self, stub, coll, no_retry, registry):
        handler = GrpcHandler(stub, retry_setting=no_retry, ts_registry=registry, timeout=3.0)
        with patch.object(stub, "Query", wraps=stub.Query) as mock_query:
            handler.query(QueryArguments("coll"))
            handler.query(QueryArguments("coll", timeout=1.0))
        assert [c.kwargs["timeout"] for c in mock_query.call_args_list] == [3.0, 1.0]

    def test_describe_collection(self, handler, coll):
        info = handler.describe_collection("coll")
        assert info["collection_id"] == 1000
        assert [f["name"] for f in info["fields"]] == ["id", "age", "name", "vec"]
        assert info["fields"][0]["is_primary"] is True
        assert info["fields"][3]["type"] == DataType.FLOAT_VECTOR
        assert handler.get_primary_key_schema("coll") == PrimaryKeySchema("id", DataType.INT64)

    def test_describe_missing_collection(self, handler):
        with pytest.raises(MilvusException) as e:
            handler.describe_collection("missing")
        assert e.value.code == ErrorCode.COLLECTION_NOT_FOUND

    def test_schema_is_cached(self, handler, coll, stub):
        handler.get_collection_schema("coll")
        handler.get_collection_schema("coll")
        assert len(stub.calls("DescribeCollection")) == 1

        handler.update_schema("coll")
        assert len(stub.calls("DescribeCollection")) == 2


class TestMutations:
    def test_insert_updates_registry(self, handler, coll, stub, registry):
        res = handler.insert_rows("coll", [row(100), row(101)])
        assert res.insert_count == 2
        assert res.primary_keys == [100, 101]
        assert registry.get("db", "coll") == stub.current_ts

        # later reads default to session consistency on the last write
        handler.query(QueryArguments("coll"))
        assert stub.calls("Query")[-1].guarantee_timestamp == stub.current_ts

    def test_upsert_and_delete(self, handler, coll, stub, registry):
        assert handler.upsert_rows("coll", row(1)).upsert_count == 1
        upsert_ts = registry.get("db", "coll")

        res = handler.delete("coll", "id in [1,2]")
        assert res.delete_count == 2
        assert registry.get("db", "coll") > upsert_ts

    def test_schema_mismatch_resends_once(self, handler, coll, stub):
        stub.schema_mismatch_times = 1
        with patch("milvus_pager.client.grpc_handler.logger"):
            res = handler.insert_rows("coll", [row(100)])
        assert res.insert_count == 1
        assert len(stub.calls("Insert")) == 2
        assert len(stub.calls("DescribeCollection")) == 2

    def test_schema_mismatch_twice(self, handler, coll, stub):
        stub.schema_mismatch_times = 2
        with patch("milvus_pager.client.grpc_handler.logger"):
            with pytest.raises(DataSchemaMismatchException):
                handler.insert_rows("coll", [row(100)])

    def test_failed_write_forgets_collection(self, handler, coll, stub, registry):
        handler.insert_rows("coll", [row(100)])
        assert ("db", "coll") in handler.schema_cache

        stub.collections.pop("coll")
        with pytest.raises(MilvusException):
            handler.delete("coll", "id in [100]")
        assert registry.get("db", "coll") is None
        assert ("db", "coll") not in handler.schema_cache

    def test_rate_limited_write_keeps_registry(self, handler, coll, stub, registry):
        handler.insert_rows("coll", [row(100)])
        written = registry.get("db", "coll")

        stub.write_statuses["Insert"] = [Status(code=ErrorCode.RATE_LIMIT, reason="rate limit")]
        with pytest.raises(MilvusException) as e:
            handler.insert_rows("coll", [row(101)])
        assert e.value.code == ErrorCode.RATE_LIMIT
        assert registry.get("db", "coll") == written
        assert ("db", "coll") in handler.schema_cache

    def test_failed_status_forgets_collection(self, handler, coll, stub, registry):
        handler.insert_rows("coll", [row(100)])

        stub.write_statuses["Insert"] = [Status(code=ErrorCode.UNEXPECTED_ERROR, reason="boom")]
        with pytest.raises(MilvusException):
            handler.insert_rows("coll", [row(101)])
        assert registry.get("db", "coll") is None
        assert ("db", "coll") not in handler.schema_cache

    def test_drop_collection(self, handler, coll, registry):
        handler.insert_rows("coll", [row(100)])
        handler.drop_collection("coll")
        assert registry.get("db", "coll") is None
        assert handler.schema_cache == {}

    def test_reset_db_name(self, handler, coll, registry):
        handler.insert_rows("coll", [row(100)])
        handler.reset_db_name("other")
        assert handler.db_name == "other"
        assert len(registry) == 0
        assert handler.schema_cache == {}


class TestRetry:
    def test_unavailable_is_retried(self, stub, coll, fast_retry, registry):
        handler = GrpcHandler(stub, retry_setting=fast_retry, ts_registry=registry)
        stub.errors["Query"] = [MockGrpcError(), MockGrpcError()]

        res = handler.query(QueryArguments("coll"))
        assert res.row_count == 10
        assert len(stub.calls("Query")) == 3

    def test_rate_limit_is_retried(self, stub, coll, fast_retry, registry):
        handler = GrpcHandler(stub, retry_setting=fast_retry, ts_registry=registry)
        stub.errors["Insert"] = [MilvusException(ErrorCode.RATE_LIMIT, "rate limit exceeded")]

        assert handler.insert_rows("coll", [row(100)]).insert_count == 1
        assert len(stub.calls("Insert")) == 2

    def test_terminal_code(self, stub, coll, fast_retry, registry):
        handler = GrpcHandler(stub, retry_setting=fast_retry, ts_registry=registry)
        stub.errors["Query"] = [MockGrpcError(grpc.StatusCode.UNIMPLEMENTED)]

        with pytest.raises(RpcFailedException):
            handler.query(QueryArguments("coll"))
        assert len(stub.calls("Query")) == 1

    def test_retries_run_out(self, stub, coll, fast_retry, registry):
        handler = GrpcHandler(stub, retry_setting=fast_retry, ts_registry=registry)
        stub.errors["Query"] = [MockGrpcError() for _ in range(10)]

        with pytest.raises(MilvusTimeoutException):
            handler.query(QueryArguments("coll"))
        assert len(stub.calls("Query")) == 5

    def test_rate_limited_status_is_resent(self, stub, coll, fast_retry, registry):
        handler = GrpcHandler(stub, retry_setting=fast_retry, ts_registry=registry)
        stub.write_statuses["Insert"] = [Status(code=ErrorCode.RATE_LIMIT, reason="rate limit")]

        assert handler.insert_rows("coll", [row(100)]).insert_count == 1
        assert len(stub.calls("Insert")) == 2
        assert registry.get(handler.db_name, "coll") == stub.current_ts
