import logging
from collections import deque
from typing import Any, Callable, Deque, Dict, Iterator, Optional

from milvus_pager.exceptions import (
    ExceptionsMessage,
    ParamError,
    ServerVersionIncompatibleException,
    UnknownErrorException,
)

from . import utils
from .arguments import SearchIteratorArguments
from .constants import (
    COLLECTION_ID,
    GUARANTEE_TIMESTAMP,
    ITER_SEARCH_BATCH_SIZE_KEY,
    ITER_SEARCH_ID_KEY,
    ITER_SEARCH_LAST_BOUND_KEY,
    ITER_SEARCH_V2_KEY,
    ITERATOR_FIELD,
    MILVUS_LIMIT,
    SCORE_FIELD_NAME,
    UNLIMITED,
)
from .iterator import cached_count, fall_back_to_latest_session_ts, fetch_page_from_cache
from .search_result import SearchResult, SingleResult

logger = logging.getLogger(__name__)


class SearchIteratorV2:
    """Pages through the hits of one vector with a server side continuation token.

    The server hands back a token and the last bound of every page; both are sent with the
    next search so the server resumes where it stopped.
    """

    def __init__(
        self,
        handler: Any,
        args: SearchIteratorArguments,
        external_filter_func: Optional[Callable[[SingleResult], SingleResult]] = None,
    ) -> None:
        self._check_params(args)
        self._handler = handler
        self._args = args.copy()
        self._pk_name = args.pk_schema.name
        self._batch_size = args.batch_size
        self._limit = args.limit
        self._returned_count = 0
        self._score_name = SCORE_FIELD_NAME
        self._external_filter_func = external_filter_func
        self._cache: Deque[SingleResult] = deque()
        self._closed = False
        self._params: Dict[str, Any] = {
            MILVUS_LIMIT: args.batch_size,
            COLLECTION_ID: args.collection_id,
            ITERATOR_FIELD: True,
            ITER_SEARCH_V2_KEY: True,
            ITER_SEARCH_BATCH_SIZE_KEY: args.batch_size,
            GUARANTEE_TIMESTAMP: 0,
            "pk_name": self._pk_name,
        }
        self._probe_for_compability(self._params)

    @property
    def session_ts(self) -> int:
        return self._params[GUARANTEE_TIMESTAMP]

    def _check_params(self, args: SearchIteratorArguments):
        # metric_type can be empty, deduced at server side
        # anns_field can be empty, deduced at server side
        if args.offset:
            raise ParamError(message=ExceptionsMessage.SearchIteratorV2Offset)
        args.validate()

    def _check_token_exists(self, token: Optional[str]):
        if token is None or token == "":
            raise ServerVersionIncompatibleException(
                message=ExceptionsMessage.SearchIteratorV2FallbackWarning
            )

    # this detects whether the server supports search_iterator_v2 and is for compatibility only
    # if the server holds iterator states, this implementation needs to be reconsidered
    def _probe_for_compability(self, params: Dict):
        dummy_params = dict(params)
        dummy_batch_size = 1
        dummy_params[MILVUS_LIMIT] = dummy_batch_size
        dummy_params[ITER_SEARCH_BATCH_SIZE_KEY] = dummy_batch_size
        iter_info = self._handler.search(
            self._args, **dummy_params
        ).get_search_iterator_v2_results_info()
        self._check_token_exists(iter_info.token)

    # internal next function, do not use this outside of this class
    def _next(self) -> SingleResult:
        res: SearchResult = self._handler.search(self._args, **self._params)
        iter_info = res.get_search_iterator_v2_results_info()
        self._check_token_exists(iter_info.token)
        self._params[ITER_SEARCH_LAST_BOUND_KEY] = utils.float_to_str(iter_info.last_bound)

        # patch token and guarantee timestamp for the first next() call
        if ITER_SEARCH_ID_KEY not in self._params:
            # the token should not change during the lifetime of the iterator
            self._params[ITER_SEARCH_ID_KEY] = iter_info.token
        if self._params[GUARANTEE_TIMESTAMP] <= 0:
            if res.get_session_ts() > 0:
                self._params[GUARANTEE_TIMESTAMP] = res.get_session_ts()
            else:
                logger.warning(
                    "failed to set up mvccTs from milvus server, use client-side ts instead"
                )
                self._params[GUARANTEE_TIMESTAMP] = fall_back_to_latest_session_ts()

        if len(res) != 1:
            raise UnknownErrorException(message=ExceptionsMessage.UnexpectedSearchResults)
        return res[0]

    def _reached_limit(self) -> bool:
        return self._limit != UNLIMITED and self._returned_count >= self._limit

    def next(self) -> SingleResult:
        if self._closed or self._reached_limit():
            return SingleResult(self._pk_name, self._score_name, [], self._args.output_fields)

        # the length of the results should be `batch_size` if no limit is set,
        # otherwise it should be the number of results left if less than `batch_size`
        target_len = self._batch_size
        if self._limit != UNLIMITED:
            target_len = min(self._batch_size, self._limit - self._returned_count)

        while cached_count(self._cache) < target_len:
            hits = self._next()
            self._score_name = hits.score_name

            # no more results from server
            if hits.row_count == 0:
                break

            if self._external_filter_func is not None:
                hits = self._external_filter_func(hits)

            if hits.row_count > 0:
                self._cache.append(hits)

        page = fetch_page_from_cache(
            self._cache, target_len, self._pk_name, self._score_name, self._args.output_fields
        )
        self._returned_count += page.row_count
        return page

    def __iter__(self) -> Iterator[SingleResult]:
        while True:
            page = self.next()
            if page.row_count == 0:
                self.close()
                return
            yield page

    def close(self):
        self._cache.clear()
        self._closed = True
