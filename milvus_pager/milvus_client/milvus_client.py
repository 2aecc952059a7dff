import logging
from typing import Any, Callable, Dict, List, Optional, Union

from milvus_pager.client.abstract import MutationResult
from milvus_pager.client.arguments import (
    QueryArguments,
    QueryIteratorArguments,
    SearchArguments,
    SearchIteratorArguments,
)
from milvus_pager.client.constants import COLLECTION_ID, UNLIMITED
from milvus_pager.client.grpc_handler import GrpcHandler
from milvus_pager.client.iterator import QueryIterator, SearchIterator
from milvus_pager.client.search_iterator import SearchIteratorV2
from milvus_pager.client.search_result import SearchResult, SingleResult
from milvus_pager.client.ts_utils import GTsDict
from milvus_pager.client.types import DataType, PrimaryKeySchema
from milvus_pager.decorators import RetrySetting
from milvus_pager.exceptions import (
    ExceptionsMessage,
    MilvusException,
    ParamError,
    ServerVersionIncompatibleException,
)
from milvus_pager.settings import Config

logger = logging.getLogger(__name__)


class MilvusClient:
    """The Milvus Client"""

    def __init__(
        self,
        stub: Any,
        db_name: str = Config.MILVUS_DB_NAME,
        timeout: Optional[float] = Config.MILVUS_RPC_TIMEOUT,
        retry_setting: Optional[RetrySetting] = None,
        ts_registry: Optional[GTsDict] = None,
    ) -> None:
        """A client for paging through Milvus collections.

        Args:
            stub: The transport, any object with ``Query``, ``Search``, ``Insert``, ``Upsert``,
                ``Delete``, ``DescribeCollection`` and ``DropCollection`` methods.
            db_name (str, optional): The database to use. Defaults to ``MILVUS_DB_NAME``.
            timeout (float, optional): What timeout to use for function calls. Defaults
                to ``MILVUS_RPC_TIMEOUT``.
                Unit: second
            retry_setting (RetrySetting, optional): How failed RPCs are retried.
            ts_registry (GTsDict, optional): Where the write timestamps for session
                consistency are kept. Defaults to the registry shared by the process.
        """
        self._handler = GrpcHandler(
            stub,
            db_name=db_name,
            retry_setting=retry_setting,
            ts_registry=ts_registry,
            timeout=timeout,
        )

    @property
    def handler(self) -> GrpcHandler:
        return self._handler

    @property
    def ts_registry(self) -> GTsDict:
        return self._handler.ts_registry

    def use_database(self, db_name: str):
        self._handler.reset_db_name(db_name)

    def describe_collection(self, collection_name: str, timeout: Optional[float] = None) -> Dict:
        return self._handler.describe_collection(collection_name, timeout=timeout)

    def drop_collection(self, collection_name: str, timeout: Optional[float] = None):
        self._handler.drop_collection(collection_name, timeout=timeout)

    def insert(
        self,
        collection_name: str,
        data: Union[Dict, List[Dict]],
        timeout: Optional[float] = None,
        partition_name: Optional[str] = "",
    ) -> Dict:
        """Insert data into the collection.

        Args:
            collection_name (str): Name of the collection to insert into.
            data (List[Dict[str, any]]): A list of dicts to pass in. If list not provided, will
                cast to list.
            timeout (float, optional): The timeout to use, will override init timeout. Defaults
                to None.

        Raises:
            TypeError: If data is neither a dict nor a list of dicts.

        Returns:
            Dict: Number of rows that were inserted and the inserted primary key list.
        """
        data = self._check_rows(data)
        if len(data) == 0:
            return {"insert_count": 0, "ids": []}

        try:
            res = self._handler.insert_rows(
                collection_name, data, partition_name=partition_name, timeout=timeout
            )
        except Exception as ex:
            logger.error("Failed to insert into collection: %s", collection_name)
            raise ex from ex
        return {"insert_count": res.insert_count, "ids": res.primary_keys}

    def upsert(
        self,
        collection_name: str,
        data: Union[Dict, List[Dict]],
        timeout: Optional[float] = None,
        partition_name: Optional[str] = "",
    ) -> Dict:
        data = self._check_rows(data)
        if len(data) == 0:
            return {"upsert_count": 0, "ids": []}

        try:
            res = self._handler.upsert_rows(
                collection_name, data, partition_name=partition_name, timeout=timeout
            )
        except Exception as ex:
            logger.error("Failed to upsert into collection: %s", collection_name)
            raise ex from ex
        return {"upsert_count": res.upsert_count, "ids": res.primary_keys}

    @staticmethod
    def _check_rows(data: Union[Dict, List[Dict]]) -> List[Dict]:
        if isinstance(data, Dict):
            data = [data]

        msg = "wrong type of argument 'data',"
        msg += f"expected 'Dict' or list of 'Dict', got '{type(data).__name__}'"

        if not isinstance(data, List):
            raise TypeError(msg)
        return data

    def delete(
        self,
        collection_name: str,
        ids: Optional[Union[list, str, int]] = None,
        timeout: Optional[float] = None,
        filter: Optional[str] = None,
        partition_name: Optional[str] = None,
    ) -> Dict:
        """Delete entries in the collection by their pk or by filter.

        Exactly one of ``ids`` and ``filter`` must be given.

        Returns:
            Dict: with key 'delete_count'
        """
        if isinstance(ids, (int, str)):
            ids = [ids]

        if filter and ids:
            raise ParamError(
                message="Ambiguous filter parameter, only one deletion condition can be specified."
            )

        if ids:
            pk = self._handler.get_primary_key_schema(collection_name, timeout=timeout)
            filter = self._pack_pks_expr(pk, ids)

        if not filter:
            raise ParamError(message="either ids or filter should be specified for deletion")

        try:
            res: MutationResult = self._handler.delete(
                collection_name, filter, partition_name=partition_name, timeout=timeout
            )
        except Exception as ex:
            logger.error("Failed to delete primary keys in collection: %s", collection_name)
            raise ex from ex
        return {"delete_count": res.delete_count}

    @staticmethod
    def _pack_pks_expr(pk: PrimaryKeySchema, pks: list) -> str:
        if pk.is_varchar:
            ids = ["'" + str(entry) + "'" for entry in pks]
            return "{} in [{}]".format(pk.name, ",".join(ids))
        ids = [str(entry) for entry in pks]
        return "{} in [{}]".format(pk.name, ",".join(ids))

    def query(
        self,
        collection_name: str,
        filter: str = "",
        output_fields: Optional[List[str]] = None,
        timeout: Optional[float] = None,
        partition_names: Optional[List[str]] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        consistency_level: Optional[Union[str, int]] = None,
    ) -> List[dict]:
        """Query for entries in the Collection.

        Args:
            filter (str): The filter to use for the query.
            output_fields (List[str], optional): List of which field values to return. If None
                specified, all fields excluding vector field will be returned.
            timeout (float, optional): Timeout to use, overides the client level assigned at init.
                Defaults to None.

        Returns:
            List[dict]: A list of result dicts.
        """
        args = QueryArguments(
            collection_name,
            filter=filter,
            limit=limit,
            offset=offset,
            output_fields=output_fields or ["*"],
            partition_names=partition_names,
            consistency_level=consistency_level,
            timeout=timeout,
        )
        try:
            res = self._handler.query(args)
        except Exception as ex:
            logger.error("Failed to query collection: %s", collection_name)
            raise ex from ex
        return res.rows()

    def search(
        self,
        collection_name: str,
        data: Union[List[list], list],
        filter: str = "",
        limit: int = 10,
        output_fields: Optional[List[str]] = None,
        search_params: Optional[dict] = None,
        timeout: Optional[float] = None,
        partition_names: Optional[List[str]] = None,
        anns_field: Optional[str] = None,
        round_decimal: int = -1,
        consistency_level: Optional[Union[str, int]] = None,
    ) -> SearchResult:
        """Search for the nearest neighbors of each vector in ``data``.

        Returns:
            SearchResult: one ``SingleResult`` per query vector.
        """
        args = SearchArguments(
            collection_name,
            data=data,
            anns_field=anns_field,
            search_params=search_params,
            limit=limit,
            round_decimal=round_decimal,
            filter=filter,
            output_fields=output_fields,
            partition_names=partition_names,
            consistency_level=consistency_level,
            timeout=timeout,
        )
        pk = self._handler.get_primary_key_schema(collection_name, timeout=timeout)
        try:
            return self._handler.search(args, pk_name=pk.name)
        except Exception as ex:
            logger.error("Failed to search collection: %s", collection_name)
            raise ex from ex

    def _iterator_schema(self, collection_name: str, timeout: Optional[float]):
        # set up schema for iterator
        try:
            schema_dict = self._handler.describe_collection(collection_name, timeout=timeout)
        except Exception as ex:
            logger.error("Failed to describe collection: %s", collection_name)
            raise ex from ex

        for field in schema_dict["fields"]:
            if field["is_primary"]:
                pk = PrimaryKeySchema(field["name"], DataType(field["type"]))
                return schema_dict[COLLECTION_ID], pk
        raise MilvusException(message=f"primary key not found in collection {collection_name!r}")

    def query_iterator(
        self,
        collection_name: str,
        batch_size: Optional[int] = 1000,
        limit: Optional[int] = UNLIMITED,
        filter: Optional[str] = "",
        output_fields: Optional[List[str]] = None,
        partition_names: Optional[List[str]] = None,
        timeout: Optional[float] = None,
        offset: int = 0,
        reduce_stop_for_best: bool = False,
        consistency_level: Optional[Union[str, int]] = None,
    ) -> QueryIterator:
        """Creates an iterator over the rows matching ``filter`` in primary key order.

        Examples:
            >>> it = client.query_iterator("my_collection", batch_size=100, offset=10)
            >>> for page in it:
            ...     print(page.rows())
        """
        if filter is not None and not isinstance(filter, str):
            raise ParamError(message=f"filter must be a str, got {type(filter)}")

        collection_id, pk = self._iterator_schema(collection_name, timeout)
        args = QueryIteratorArguments(
            collection_name,
            batch_size=batch_size,
            limit=limit,
            offset=offset,
            pk_schema=pk,
            collection_id=collection_id,
            reduce_stop_for_best=reduce_stop_for_best,
            filter=filter,
            output_fields=output_fields,
            partition_names=partition_names,
            consistency_level=consistency_level,
            database_name=self._handler.db_name,
            timeout=timeout,
        )
        return QueryIterator(self._handler, args)

    def search_iterator(
        self,
        collection_name: str,
        data: Union[List[list], list],
        batch_size: Optional[int] = 1000,
        filter: Optional[str] = None,
        limit: Optional[int] = UNLIMITED,
        output_fields: Optional[List[str]] = None,
        search_params: Optional[dict] = None,
        timeout: Optional[float] = None,
        partition_names: Optional[List[str]] = None,
        anns_field: Optional[str] = None,
        round_decimal: int = -1,
        external_filter_func: Optional[Callable[[SingleResult], SingleResult]] = None,
    ) -> Union[SearchIteratorV2, SearchIterator]:
        """Creates an iterator for searching vectors in batches.

        Search Iterator V2 is used when the server supports it, otherwise the iterator falls
        back to V1, which pages by probing with range searches.

        Args:
            collection_name (str): Name of the collection to search in.
            data (Union[List[list], list]): One vector to search with.
            batch_size (int, optional): Number of results to fetch per batch. Defaults to 1000.
                Must be between 1 and MAX_BATCH_SIZE.
            filter (str, optional): Filtering expression to filter the results. Defaults to None.
            limit (int, optional): Total number of results to return. Defaults to UNLIMITED.
            search_params (dict, optional): Parameters for the search operation. V1 needs the
                ``metric_type``.
            external_filter_func (callable, optional): Applied to every page by V2 before the
                page is cached.

        Raises:
            ParamError: If the input parameters are invalid (e.g., invalid batch_size or multiple
                vectors in data).
        """
        if filter is not None and not isinstance(filter, str):
            raise ParamError(message=f"filter must be a str, got {type(filter)}")

        collection_id, pk = self._iterator_schema(collection_name, timeout)
        args = SearchIteratorArguments(
            collection_name,
            data=data,
            batch_size=batch_size,
            limit=limit,
            pk_schema=pk,
            collection_id=collection_id,
            anns_field=anns_field,
            search_params=search_params,
            round_decimal=round_decimal,
            filter=filter,
            output_fields=output_fields,
            partition_names=partition_names,
            database_name=self._handler.db_name,
            timeout=timeout,
        )

        # compatibility logic, change this when support get version from server
        try:
            return SearchIteratorV2(self._handler, args, external_filter_func)
        except ServerVersionIncompatibleException:
            # for compatibility, return search_iterator V1
            logger.warning(ExceptionsMessage.SearchIteratorV2FallbackWarning)

        return SearchIterator(self._handler, args)
