import dataclasses
from typing import Any, Dict, List, Optional

from milvus_pager.exceptions import ExceptionsMessage, ParamError

from . import entity_helper, ts_utils, utils
from .arguments import DQLArguments, QueryArguments, SearchArguments
from .check import check_pass_param
from .constants import (
    ANNS_FIELD,
    COLLECTION_ID,
    GUARANTEE_TIMESTAMP,
    IGNORE_GROWING,
    ITER_SEARCH_BATCH_SIZE_KEY,
    ITER_SEARCH_ID_KEY,
    ITER_SEARCH_LAST_BOUND_KEY,
    ITER_SEARCH_V2_KEY,
    ITERATOR_FIELD,
    METRIC_TYPE,
    MILVUS_LIMIT,
    OFFSET,
    PARAMS,
    REDUCE_STOP_FOR_BEST,
    ROUND_DECIMAL,
    TOPK,
)
from .messages import (
    CollectionSchema,
    DeleteRequest,
    DescribeCollectionRequest,
    DropCollectionRequest,
    InsertRequest,
    KeyValuePair,
    QueryRequest,
    SearchRequest,
    UpsertRequest,
)
from .types import ConsistencyLevel, get_consistency_level


def _kv(key: str, value: Any) -> KeyValuePair:
    return KeyValuePair(key=str(key), value=utils.dumps(value))


class Prepare:
    @staticmethod
    def _dql_common(
        args: DQLArguments, registry: ts_utils.GTsDict, db_name: str, kwargs: Dict
    ) -> Dict:
        """Fields every read request carries, the guarantee timestamp included.

        A ``guarantee_timestamp`` in kwargs pins the read, iterators use it to stay on
        their session timestamp.
        """
        current_db = args.database_name or db_name
        output_fields = kwargs.get("output_fields", args.output_fields)
        check_pass_param(
            db_name=current_db,
            collection_name=args.collection_name,
            output_fields=output_fields,
            partition_name_array=args.partition_names,
            timeout=args.timeout,
            guarantee_timestamp=kwargs.get(GUARANTEE_TIMESTAMP),
        )

        ts, use_default_consistency = ts_utils.construct_guarantee_ts(
            registry,
            current_db,
            args.collection_name,
            args.consistency_level,
            kwargs.get(GUARANTEE_TIMESTAMP),
        )
        if kwargs.get(GUARANTEE_TIMESTAMP) is not None:
            ts = kwargs[GUARANTEE_TIMESTAMP]

        consistency_level = (
            get_consistency_level(args.consistency_level)
            if args.consistency_level is not None
            else ConsistencyLevel.Strong
        )
        return {
            "collection_name": args.collection_name,
            "db_name": current_db,
            "output_fields": list(output_fields or []),
            "partition_names": list(args.partition_names),
            "guarantee_timestamp": ts,
            "consistency_level": consistency_level,
            "use_default_consistency": use_default_consistency,
        }

    @classmethod
    def query_request(
        cls,
        args: QueryArguments,
        registry: ts_utils.GTsDict,
        db_name: str = "",
        **kwargs,
    ) -> QueryRequest:
        expr = kwargs.get("expr", args.filter)
        limit = kwargs.get(MILVUS_LIMIT, args.limit)
        offset = kwargs.get(OFFSET, args.offset)
        check_pass_param(filter=expr, limit=limit, offset=offset)

        req = QueryRequest(expr=expr or "", **cls._dql_common(args, registry, db_name, kwargs))

        collection_id = kwargs.get(COLLECTION_ID)
        if collection_id:
            req.query_params.append(_kv(COLLECTION_ID, collection_id))

        if limit is not None:
            req.query_params.append(_kv(MILVUS_LIMIT, limit))

        if offset:
            req.query_params.append(_kv(OFFSET, offset))

        is_iterator = kwargs.get(ITERATOR_FIELD)
        if is_iterator is not None:
            req.query_params.append(_kv(ITERATOR_FIELD, is_iterator))

        req.query_params.append(_kv(IGNORE_GROWING, bool(getattr(args, "ignore_growing", False))))
        req.query_params.append(
            _kv(REDUCE_STOP_FOR_BEST, bool(kwargs.get(REDUCE_STOP_FOR_BEST, False)))
        )
        return req

    @classmethod
    def search_request(
        cls,
        args: SearchArguments,
        registry: ts_utils.GTsDict,
        db_name: str = "",
        **kwargs,
    ) -> SearchRequest:
        expr = kwargs.get("expr", args.filter)
        limit = kwargs.get(MILVUS_LIMIT, args.limit)
        check_pass_param(
            filter=expr,
            topk=limit,
            anns_field=args.anns_field,
            round_decimal=args.round_decimal,
            search_data=args.data,
        )
        if not args.data:
            raise ParamError(message=ExceptionsMessage.EmptySearchVectors)

        search_params = {
            TOPK: limit,
            ROUND_DECIMAL: args.round_decimal,
            IGNORE_GROWING: args.ignore_growing,
        }
        if args.offset:
            search_params[OFFSET] = args.offset

        for key in (
            ITERATOR_FIELD,
            ITER_SEARCH_V2_KEY,
            ITER_SEARCH_BATCH_SIZE_KEY,
            ITER_SEARCH_LAST_BOUND_KEY,
            ITER_SEARCH_ID_KEY,
        ):
            if kwargs.get(key) is not None:
                search_params[key] = kwargs[key]

        collection_id = kwargs.get(COLLECTION_ID)
        if collection_id:
            search_params[COLLECTION_ID] = str(collection_id)

        if args.metric_type:
            search_params[METRIC_TYPE] = args.metric_type

        if args.anns_field:
            search_params[ANNS_FIELD] = args.anns_field

        search_params[PARAMS] = utils.get_params(args.search_params)

        return SearchRequest(
            dsl=expr or "",
            placeholder_group=entity_helper.vectors_to_placeholder(args.vector_type, args.data),
            nq=entity_helper.get_input_num_rows(args.data),
            search_params=[_kv(key, value) for key, value in search_params.items()],
            **cls._dql_common(args, registry, db_name, kwargs),
        )

    @classmethod
    def insert_request(
        cls,
        collection_name: str,
        rows: List[Dict],
        schema: CollectionSchema,
        db_name: str = "",
        partition_name: Optional[str] = None,
    ) -> InsertRequest:
        check_pass_param(collection_name=collection_name, db_name=db_name)
        fields_data = entity_helper.rows_to_fields_data(rows, schema.fields)
        return InsertRequest(
            collection_name=collection_name,
            db_name=db_name,
            partition_name=partition_name or "",
            fields_data=fields_data,
            num_rows=len(rows),
        )

    @classmethod
    def upsert_request(
        cls,
        collection_name: str,
        rows: List[Dict],
        schema: CollectionSchema,
        db_name: str = "",
        partition_name: Optional[str] = None,
    ) -> UpsertRequest:
        check_pass_param(collection_name=collection_name, db_name=db_name)
        # upsert always carries the primary key, auto id or not
        fields = [
            dataclasses.replace(f, auto_id=False) if f.is_primary_key else f
            for f in schema.fields
        ]
        fields_data = entity_helper.rows_to_fields_data(rows, fields)
        return UpsertRequest(
            collection_name=collection_name,
            db_name=db_name,
            partition_name=partition_name or "",
            fields_data=fields_data,
            num_rows=len(rows),
        )

    @classmethod
    def delete_request(
        cls,
        collection_name: str,
        filter: str,
        db_name: str = "",
        partition_name: Optional[str] = None,
    ) -> DeleteRequest:
        check_pass_param(collection_name=collection_name, db_name=db_name)
        if not isinstance(filter, str) or not filter:
            raise ParamError(message=f"`filter` value {filter} is illegal")
        return DeleteRequest(
            collection_name=collection_name,
            db_name=db_name,
            partition_name=partition_name or "",
            expr=filter,
        )

    @classmethod
    def describe_collection_request(
        cls, collection_name: str, db_name: str = ""
    ) -> DescribeCollectionRequest:
        check_pass_param(collection_name=collection_name, db_name=db_name)
        return DescribeCollectionRequest(collection_name=collection_name, db_name=db_name)

    @classmethod
    def drop_collection_request(
        cls, collection_name: str, db_name: str = ""
    ) -> DropCollectionRequest:
        check_pass_param(collection_name=collection_name, db_name=db_name)
        return DropCollectionRequest(collection_name=collection_name, db_name=db_name)
