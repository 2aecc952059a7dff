import logging
from typing import Any, Dict, List, Optional, Tuple

from milvus_pager.decorators import RetrySetting, is_rate_limit, retry_on_rpc_failure
from milvus_pager.exceptions import (
    DataSchemaMismatchException,
    ErrorCode,
    LegacyErrorCode,
    MilvusException,
    ParamError,
)
from milvus_pager.settings import Config

from .abstract import MutationResult, QueryResults
from .arguments import QueryArguments, SearchArguments
from .check import check_pass_param
from .messages import CollectionSchema, Status
from .prepare import Prepare
from .search_result import SearchResult
from .ts_utils import GTsDict, default_gts_dict
from .types import DataType, PrimaryKeySchema
from .utils import check_status, is_successful

logger = logging.getLogger(__name__)


def is_schema_mismatch(status: Status) -> bool:
    return (
        status.code == ErrorCode.SCHEMA_MISMATCH
        or status.error_code == LegacyErrorCode.SchemaMismatch
    )


class GrpcHandler:
    """Runs Milvus RPCs over a transport stub.

    Every RPC is validate (build the request through ``Prepare``), transport (call the stub)
    and finalize (check the status, convert the response), run as a whole through the retry
    executor. The stub is any object exposing ``Query``, ``Search``, ``Insert``, ``Upsert``,
    ``Delete``, ``DescribeCollection`` and ``DropCollection`` that raises ``grpc.RpcError``
    on transport failures.
    """

    def __init__(
        self,
        stub: Any,
        db_name: str = Config.MILVUS_DB_NAME,
        retry_setting: Optional[RetrySetting] = None,
        ts_registry: Optional[GTsDict] = None,
        timeout: Optional[float] = Config.MILVUS_RPC_TIMEOUT,
    ) -> None:
        if stub is None:
            raise ParamError(message="stub cannot be None")
        check_pass_param(db_name=db_name, timeout=timeout)
        self._stub = stub
        self._db_name = db_name
        if retry_setting is None:
            retry_setting = RetrySetting.from_config()
        self.retry_setting = retry_setting
        self._ts_registry = ts_registry if ts_registry is not None else default_gts_dict()
        self._timeout = timeout
        # (db name, collection name) -> CollectionSchema
        self.schema_cache: Dict[Tuple[str, str], CollectionSchema] = {}

    @property
    def db_name(self) -> str:
        return self._db_name

    @property
    def ts_registry(self) -> GTsDict:
        return self._ts_registry

    @property
    def timeout(self) -> Optional[float]:
        return self._timeout

    def reset_db_name(self, db_name: str):
        check_pass_param(db_name=db_name)
        self.schema_cache.clear()
        self._ts_registry.clear()
        self._db_name = db_name

    def _current_db(self, db_name: Optional[str]) -> str:
        return db_name or self._db_name

    def _rpc_timeout(self, timeout: Optional[float]) -> Optional[float]:
        return timeout if timeout is not None else self._timeout

    @retry_on_rpc_failure()
    def query(self, args: QueryArguments, **kwargs) -> QueryResults:
        request = Prepare.query_request(args, self._ts_registry, self._db_name, **kwargs)

        response = self._stub.Query(request, timeout=self._rpc_timeout(args.timeout))
        check_status(response.status)
        return QueryResults.from_proto(response, request.output_fields)

    @retry_on_rpc_failure()
    def search(self, args: SearchArguments, **kwargs) -> SearchResult:
        pk_name = kwargs.pop("pk_name", "")
        request = Prepare.search_request(args, self._ts_registry, self._db_name, **kwargs)

        response = self._stub.Search(request, timeout=self._rpc_timeout(args.timeout))
        check_status(response.status)
        return SearchResult(
            response.results,
            pk_name,
            request.output_fields,
            args.round_decimal,
            session_ts=response.session_ts,
        )

    @retry_on_rpc_failure()
    def describe_collection(
        self,
        collection_name: str,
        db_name: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Dict:
        current_db = self._current_db(db_name)
        request = Prepare.describe_collection_request(collection_name, current_db)

        response = self._stub.DescribeCollection(request, timeout=self._rpc_timeout(timeout))
        check_status(response.status)
        self.schema_cache[(current_db, collection_name)] = response.schema
        return self._describe_to_dict(response)

    @staticmethod
    def _describe_to_dict(response: Any) -> Dict:
        schema = response.schema
        return {
            "collection_name": response.collection_name or schema.name,
            "collection_id": response.collection_id,
            "consistency_level": response.consistency_level,
            "enable_dynamic_field": schema.enable_dynamic_field,
            "fields": [
                {
                    "name": f.name,
                    "type": DataType(f.data_type),
                    "is_primary": f.is_primary_key,
                    "auto_id": f.auto_id,
                    "dim": f.dim,
                    "element_type": f.element_type,
                    "nullable": f.nullable,
                }
                for f in schema.fields
            ],
        }

    def get_collection_schema(
        self,
        collection_name: str,
        db_name: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> CollectionSchema:
        current_db = self._current_db(db_name)
        schema = self.schema_cache.get((current_db, collection_name))
        if schema is None:
            self.describe_collection(collection_name, current_db, timeout)
            schema = self.schema_cache[(current_db, collection_name)]
        return schema

    def update_schema(
        self,
        collection_name: str,
        db_name: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> CollectionSchema:
        self.schema_cache.pop((self._current_db(db_name), collection_name), None)
        return self.get_collection_schema(collection_name, db_name, timeout)

    def get_primary_key_schema(
        self,
        collection_name: str,
        db_name: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> PrimaryKeySchema:
        schema = self.get_collection_schema(collection_name, db_name, timeout)
        for f in schema.fields:
            if f.is_primary_key:
                return PrimaryKeySchema(f.name, DataType(f.data_type))
        raise MilvusException(message=f"primary key not found in collection {collection_name!r}")

    def _finalize_mutation(
        self, current_db: str, collection_name: str, response: Any
    ) -> MutationResult:
        if not is_successful(response.status):
            try:
                check_status(response.status)
            except MilvusException as e:
                # a rate limited write is resent by the retry loop
                if not is_rate_limit(e):
                    self.schema_cache.pop((current_db, collection_name), None)
                    self._ts_registry.remove(current_db, collection_name)
                raise

        m = MutationResult(response)
        self._ts_registry.update(current_db, collection_name, m.timestamp)
        return m

    def _write_rows(
        self,
        method: str,
        collection_name: str,
        rows: List[Dict],
        partition_name: Optional[str],
        db_name: Optional[str],
        timeout: Optional[float],
    ) -> MutationResult:
        if isinstance(rows, dict):
            rows = [rows]
        current_db = self._current_db(db_name)
        build = Prepare.insert_request if method == "Insert" else Prepare.upsert_request

        schema = self.get_collection_schema(collection_name, current_db, timeout)
        request = build(collection_name, rows, schema, current_db, partition_name)
        response = getattr(self._stub, method)(request, timeout=self._rpc_timeout(timeout))
        if is_schema_mismatch(response.status):
            # the collection changed under us, describe it again and resend once
            logger.warning(
                f"schema of collection {collection_name!r} changed, refresh it and resend"
            )
            schema = self.update_schema(collection_name, current_db, timeout)
            request = build(collection_name, rows, schema, current_db, partition_name)
            response = getattr(self._stub, method)(request, timeout=self._rpc_timeout(timeout))
            if is_schema_mismatch(response.status):
                raise DataSchemaMismatchException(
                    response.status.code, response.status.reason, response.status.error_code
                )
        return self._finalize_mutation(current_db, collection_name, response)

    @retry_on_rpc_failure()
    def insert_rows(
        self,
        collection_name: str,
        rows: List[Dict],
        partition_name: Optional[str] = None,
        db_name: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> MutationResult:
        return self._write_rows("Insert", collection_name, rows, partition_name, db_name, timeout)

    @retry_on_rpc_failure()
    def upsert_rows(
        self,
        collection_name: str,
        rows: List[Dict],
        partition_name: Optional[str] = None,
        db_name: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> MutationResult:
        return self._write_rows("Upsert", collection_name, rows, partition_name, db_name, timeout)

    @retry_on_rpc_failure()
    def delete(
        self,
        collection_name: str,
        expression: str,
        partition_name: Optional[str] = None,
        db_name: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> MutationResult:
        current_db = self._current_db(db_name)
        request = Prepare.delete_request(collection_name, expression, current_db, partition_name)

        response = self._stub.Delete(request, timeout=self._rpc_timeout(timeout))
        return self._finalize_mutation(current_db, collection_name, response)

    @retry_on_rpc_failure()
    def drop_collection(
        self,
        collection_name: str,
        db_name: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        current_db = self._current_db(db_name)
        request = Prepare.drop_collection_request(collection_name, current_db)

        status = self._stub.DropCollection(request, timeout=self._rpc_timeout(timeout))
        check_status(status)
        self._ts_registry.remove(current_db, collection_name)
        self.schema_cache.pop((current_db, collection_name), None)
