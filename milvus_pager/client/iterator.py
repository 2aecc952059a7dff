import datetime
import logging
import math
from collections import deque
from copy import deepcopy
from typing import Any, Deque, Dict, Iterator, List, Optional

from milvus_pager.exceptions import (
    ExceptionsMessage,
    ParamError,
    ServerVersionIncompatibleException,
    UnknownErrorException,
)

from .abstract import QueryResults
from .arguments import QueryIteratorArguments, SearchIteratorArguments
from .constants import (
    CALC_DIST_BM25,
    CALC_DIST_COSINE,
    CALC_DIST_HAMMING,
    CALC_DIST_IP,
    CALC_DIST_JACCARD,
    CALC_DIST_L2,
    CALC_DIST_TANIMOTO,
    COLLECTION_ID,
    DEFAULT_SEARCH_EXTENSION_RATE,
    EF,
    GUARANTEE_TIMESTAMP,
    ITERATOR_FIELD,
    MAX_BATCH_SIZE,
    MAX_FILTERED_IDS_COUNT_ITERATION,
    MAX_TRY_TIME,
    METRIC_TYPE,
    MILVUS_LIMIT,
    MIN_SEARCH_WIDTH,
    PARAMS,
    RADIUS,
    RANGE_FILTER,
    REDUCE_STOP_FOR_BEST,
    SCORE_FIELD_NAME,
    UNLIMITED,
)
from .search_result import SingleResult
from .utils import get_params, mkts_from_datetime

logger = logging.getLogger(__name__)


def fall_back_to_latest_session_ts():
    d = datetime.datetime.now()
    return mkts_from_datetime(d)


def quote_varchar(value: Any, quote: str = '"') -> str:
    escaped = str(value).replace("\\", "\\\\").replace(quote, "\\" + quote)
    return f"{quote}{escaped}{quote}"


def extend_batch_size(batch_size: int, next_param: dict, to_extend_batch_size: bool) -> int:
    extend_rate = 1
    if to_extend_batch_size:
        extend_rate = DEFAULT_SEARCH_EXTENSION_RATE
    if EF in next_param[PARAMS]:
        return min(MAX_BATCH_SIZE, batch_size * extend_rate, next_param[PARAMS][EF])
    return min(MAX_BATCH_SIZE, batch_size * extend_rate)


def metrics_positive_related(metrics: str) -> bool:
    """True for metrics where a smaller distance means more similar."""
    if metrics in [CALC_DIST_L2, CALC_DIST_JACCARD, CALC_DIST_HAMMING, CALC_DIST_TANIMOTO]:
        return True
    if metrics in [CALC_DIST_IP, CALC_DIST_COSINE, CALC_DIST_BM25]:
        return False
    raise ParamError(message=ExceptionsMessage.UnknownMetricType % metrics)


def cached_count(cache: Deque[SingleResult]) -> int:
    return sum(page.row_count for page in cache)


def fetch_page_from_cache(
    cache: Deque[SingleResult],
    count: int,
    pk_name: str,
    score_name: str,
    output_names: Optional[List[str]] = None,
) -> SingleResult:
    """Pop up to count rows off the front of cache as one page.

    A page that does not fit is split, its tail goes back to the front of the cache.
    """
    result = SingleResult(pk_name, score_name, [], output_names)
    fetched = 0
    while cache and fetched < count:
        page = cache.popleft()
        need = count - fetched
        if page.row_count <= need:
            result.append(page)
            fetched += page.row_count
        else:
            result.append(page.copy(0, need))
            cache.appendleft(page.copy(need, page.row_count))
            fetched += need
    return result


class QueryIterator:
    """Pages through the rows matching a filter in ascending primary key order.

    Each page is fetched with a ``pk > last_pk`` cursor filter, pinned to the session
    timestamp captured at construction, so concurrent writes never shift the pages.

    Examples:
        >>> it = client.query_iterator("coll", batch_size=100, filter="age > 10")
        >>> for page in it:
        ...     print(page.row_count)
    """

    def __init__(self, handler: Any, args: QueryIteratorArguments) -> None:
        args.validate()
        self._handler = handler
        self._args = args.copy()
        self._pk_name = args.pk_schema.name
        self._pk_str = args.pk_schema.is_varchar
        self._batch_size = args.batch_size
        self._limit = args.limit
        self._offset = args.offset
        # offset is done by seeking with the cursor, not by the server
        self._args.offset = 0
        self._session_ts = 0
        self._next_id = None
        self._cache: Optional[QueryResults] = None
        self._returned_count = 0
        self._closed = False

        self._init_session_ts()
        self._seek()

    @property
    def session_ts(self) -> int:
        return self._session_ts

    def _init_session_ts(self):
        self._execute_query(self._args.filter, 1, is_seek=False)

    def _seek(self):
        if self._offset <= 0:
            return
        seeked = 0
        while seeked < self._offset:
            limit = min(MAX_BATCH_SIZE, self._offset - seeked)
            res = self._execute_query(self._setup_next_filter(), limit, is_seek=True)
            if res.row_count == 0:
                break
            self._update_cursor(res)
            seeked += res.row_count
        logger.debug(f"query iterator seeked {seeked} rows of offset {self._offset}")

    def _execute_query(self, filter: str, limit: int, is_seek: bool) -> QueryResults:
        kwargs: Dict[str, Any] = {
            "expr": filter,
            MILVUS_LIMIT: limit,
            COLLECTION_ID: self._args.collection_id,
            ITERATOR_FIELD: not is_seek,
            REDUCE_STOP_FOR_BEST: False if is_seek else self._args.reduce_stop_for_best,
        }
        if is_seek:
            # seeking only needs the primary keys
            kwargs["output_fields"] = []
        if self._session_ts > 0:
            kwargs[GUARANTEE_TIMESTAMP] = self._session_ts

        self._args.limit = limit
        res = self._handler.query(self._args, **kwargs)
        if self._session_ts <= 0:
            if res.session_ts > 0:
                self._session_ts = res.session_ts
            else:
                logger.warning(
                    "failed to set up mvccTs from milvus server, use client-side ts instead"
                )
                self._session_ts = fall_back_to_latest_session_ts()
        return res

    def _setup_next_filter(self) -> str:
        user_filter = self._args.filter
        if self._next_id is None:
            return user_filter

        if self._pk_str:
            iter_filter = f"{self._pk_name} > {quote_varchar(self._next_id)}"
        else:
            iter_filter = f"{self._pk_name} > {self._next_id}"

        if user_filter:
            return f"({user_filter}) and {iter_filter}"
        return iter_filter

    def _update_cursor(self, res: QueryResults):
        if res.row_count == 0:
            return
        pk = res.get_field(self._pk_name)
        if pk is None:
            raise UnknownErrorException(message=ExceptionsMessage.PrimaryKeyNotInResults)
        self._next_id = pk.values[-1]

    def _empty_page(self) -> QueryResults:
        return QueryResults([], self._args.output_fields)

    def _reached_limit(self) -> bool:
        return self._limit != UNLIMITED and self._returned_count >= self._limit

    def next(self) -> QueryResults:
        if self._closed or self._reached_limit():
            return self._empty_page()

        if self._cache is not None and self._cache.row_count >= self._batch_size:
            batch = self._cache.copy(0, self._batch_size)
            if self._cache.row_count > self._batch_size:
                self._cache = self._cache.copy(self._batch_size)
            else:
                self._cache = None
        else:
            page = self._execute_query(self._setup_next_filter(), self._batch_size, False)
            batch = page.copy(0, self._batch_size)
            if page.row_count >= 2 * self._batch_size:
                # the server returned more than asked for, cache whole batches of it
                cache_to = 2 * self._batch_size
                while cache_to <= page.row_count - self._batch_size:
                    cache_to += self._batch_size
                self._cache = page.copy(self._batch_size, cache_to)

        ret = batch
        if self._limit != UNLIMITED:
            left = self._limit - self._returned_count
            if left < batch.row_count:
                ret = batch.copy(0, left)

        # the cursor follows the whole batch, rows held in cache are never fetched again
        self._update_cursor(batch)
        self._returned_count += batch.row_count
        return ret

    def __iter__(self) -> Iterator[QueryResults]:
        while True:
            page = self.next()
            if page.row_count == 0:
                self.close()
                return
            yield page

    def close(self) -> None:
        self._cache = None
        self._closed = True


class SearchIterator:
    """Pages through the hits of one vector by probing outward with range searches.

    Every search widens the ``[range_filter, radius]`` window past the tail score of the
    previous page and excludes the ids sitting exactly on that tail.
    """

    def __init__(self, handler: Any, args: SearchIteratorArguments) -> None:
        args.validate()
        self._handler = handler
        self._args = args.copy()
        self._pk_name = args.pk_schema.name
        self._pk_str = args.pk_schema.is_varchar
        self._batch_size = args.batch_size
        self._limit = args.limit
        self._user_filter = args.filter
        # radius and range_filter may be given in either layer, the probes rewrite them in params
        search_params = {PARAMS: get_params(self._args.search_params)}
        if self._args.metric_type:
            search_params[METRIC_TYPE] = self._args.metric_type
        self._args.search_params = search_params
        # the bounds the user asked for, the working copy is rewritten by every probe
        self._user_params = deepcopy(self._args.params)
        self._score_name = SCORE_FIELD_NAME
        self._cache: Deque[SingleResult] = deque()
        self._width = 0.0
        self._tail_distance = 0.0
        self._filtered_ids: List[Any] = []
        self._returned_count = 0
        self._session_ts = 0
        self._closed = False

        self._check_offset()
        self._check_for_special_index_param()
        self._check_range_search_parameters()
        self._init_search_iterator()

    @property
    def session_ts(self) -> int:
        return self._session_ts

    def _check_offset(self):
        if self._args.offset > 0:
            raise ParamError(message=ExceptionsMessage.SearchIteratorOffset)

    def _check_for_special_index_param(self):
        ef = self._args.ef
        if ef is not None and ef < self._batch_size:
            raise ParamError(message=ExceptionsMessage.EfLessThanBatchSize)

    def _check_range_search_parameters(self):
        metric_type = self._args.metric_type
        if not metric_type:
            raise ParamError(message=ExceptionsMessage.MetricTypeMissing)
        self._positive = metrics_positive_related(metric_type)

        radius = self._user_params.get(RADIUS)
        range_filter = self._user_params.get(RANGE_FILTER)
        if radius is None or range_filter is None:
            return
        if self._positive and radius <= range_filter:
            raise ParamError(message=ExceptionsMessage.RadiusLargerThanRangeFilter % metric_type)
        if not self._positive and radius >= range_filter:
            raise ParamError(
                message=ExceptionsMessage.RadiusSmallerThanRangeFilter % metric_type
            )

    def _init_search_iterator(self):
        page = self._execute_search(self._user_filter, False)
        if page.row_count == 0:
            raise ParamError(message=ExceptionsMessage.SearchIteratorEmptyInit)
        self._score_name = page.score_name
        self._update_width(page)
        self._update_filtered_ids(page)
        self._update_tail_distance(page)
        self._cache.append(page)

    def _execute_search(self, filter: str, extend: bool) -> SingleResult:
        limit = extend_batch_size(self._batch_size, {PARAMS: self._args.params}, extend)
        kwargs: Dict[str, Any] = {
            "expr": filter,
            MILVUS_LIMIT: limit,
            ITERATOR_FIELD: True,
            COLLECTION_ID: self._args.collection_id,
            "pk_name": self._pk_name,
        }
        if self._session_ts > 0:
            kwargs[GUARANTEE_TIMESTAMP] = self._session_ts

        res = self._handler.search(self._args, **kwargs)
        if self._session_ts <= 0:
            if res.get_session_ts() > 0:
                self._session_ts = res.get_session_ts()
            else:
                logger.warning(
                    "failed to set up mvccTs from milvus server, use client-side ts instead"
                )
                self._session_ts = fall_back_to_latest_session_ts()

        if len(res) == 0:
            raise UnknownErrorException(message=ExceptionsMessage.EmptySearchResults)
        return res[0]

    def _update_width(self, page: SingleResult):
        scores = page.scores
        if not scores:
            return
        width = abs(scores[0] - scores[-1])
        self._width = width if width > 0 else MIN_SEARCH_WIDTH

    def _update_tail_distance(self, page: SingleResult):
        scores = page.scores
        if scores:
            self._tail_distance = scores[-1]

    def _update_filtered_ids(self, page: SingleResult):
        if page.row_count == 0:
            return
        ids, scores = page.ids, page.scores
        last_score = scores[-1]
        tied = [pk for pk, score in zip(ids, scores) if math.isclose(score, last_score)]
        if self._filtered_ids and math.isclose(last_score, self._tail_distance):
            # the tail did not move, keep the ids tied to it from the earlier pages
            self._filtered_ids.extend(tied)
        else:
            self._filtered_ids = tied
        if len(self._filtered_ids) > MAX_FILTERED_IDS_COUNT_ITERATION:
            raise ServerVersionIncompatibleException(
                message=ExceptionsMessage.FilteredIdsTooMany % MAX_FILTERED_IDS_COUNT_ITERATION
            )

    def _filtered_duplicated_result_expr(self) -> str:
        if not self._filtered_ids:
            return self._user_filter

        if self._pk_str:
            ids = ",".join(quote_varchar(pk, "'") for pk in self._filtered_ids)
        else:
            ids = ",".join(str(pk) for pk in self._filtered_ids)
        filtered = f"{self._pk_name} not in [{ids}]"
        if self._user_filter:
            return f"({self._user_filter}) and {filtered}"
        return filtered

    def _next_params(self, coefficient: float):
        coefficient = max(coefficient, 1.0)
        user_radius = self._user_params.get(RADIUS)
        if self._positive:
            next_radius = self._tail_distance + self._width * coefficient
            if user_radius is not None and next_radius > user_radius:
                next_radius = user_radius
        else:
            next_radius = self._tail_distance - self._width * coefficient
            if user_radius is not None and next_radius < user_radius:
                next_radius = user_radius
        self._args.radius = next_radius
        self._args.range_filter = self._tail_distance
        logger.debug(
            f"search iterator probes radius={next_radius}, range_filter={self._tail_distance}"
        )

    def _try_search_fill(self, count: int):
        try_time = 0
        coefficient = 1.0
        while True:
            self._next_params(coefficient)
            page = self._execute_search(self._filtered_duplicated_result_expr(), True)
            try_time += 1
            coefficient += 1.0
            if page.row_count > 0:
                self._update_filtered_ids(page)
                self._update_tail_distance(page)
                self._cache.append(page)

            if cached_count(self._cache) >= count:
                break
            if try_time >= MAX_TRY_TIME:
                logger.warning(
                    f"Search probe exceed max try times:{MAX_TRY_TIME} directly, "
                    f"returning {cached_count(self._cache)} of {count} rows"
                )
                break

    def _empty_page(self) -> SingleResult:
        return SingleResult(self._pk_name, self._score_name, [], self._args.output_fields)

    def _reached_limit(self) -> bool:
        return self._limit != UNLIMITED and self._returned_count >= self._limit

    def next(self) -> SingleResult:
        if self._closed or self._reached_limit():
            return self._empty_page()

        count = self._batch_size
        if self._limit != UNLIMITED:
            count = min(count, self._limit - self._returned_count)

        if cached_count(self._cache) < count:
            self._try_search_fill(count)

        page = fetch_page_from_cache(
            self._cache, count, self._pk_name, self._score_name, self._args.output_fields
        )
        if page.row_count == self._batch_size:
            self._update_width(page)
        self._returned_count += page.row_count
        return page

    def __iter__(self) -> Iterator[SingleResult]:
        while True:
            page = self.next()
            if page.row_count == 0:
                self.close()
                return
            yield page

    def close(self) -> None:
        self._cache.clear()
        self._closed = True
