import ast
import itertools
import operator
import re
from typing import Any, Callable, Dict, List, Optional, Tuple

import grpc
import ujson

from milvus_pager.client import entity_helper
from milvus_pager.client.constants import LOGICAL_BITS
from milvus_pager.client.field_data import FieldData
from milvus_pager.client.messages import (
    CollectionSchema,
    DescribeCollectionResponse,
    FieldSchema,
    IDs,
    MutationResult,
    QueryResults,
    SearchIteratorV2Results,
    SearchResultData,
    SearchResults,
    Status,
)
from milvus_pager.client.types import DataType
from milvus_pager.exceptions import ErrorCode

# hybrid timestamps handed out by the fake server start here, far above the
# strong/eventually/bounded markers
BASE_TS = 1000 << LOGICAL_BITS

_OPS = {
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
    "==": operator.eq,
    "!=": operator.ne,
}
_COMPARE = re.compile(r"^(\w+)\s*(>=|<=|==|!=|>|<)\s*(.+)$")
_IN = re.compile(r"^(\w+)\s+(not\s+in|in)\s+\[(.*)\]$")


class MockGrpcError(grpc.RpcError):
    def __init__(self, code=grpc.StatusCode.UNAVAILABLE, details="error"):
        self._code = code
        self._details = details

    def code(self):
        return self._code

    def details(self):
        return self._details


def _literal(text: str) -> Any:
    text = text.strip()
    if len(text) >= 2 and text[0] == '"' and text[-1] == '"':
        return text[1:-1].replace('\\"', '"').replace("\\\\", "\\")
    return ast.literal_eval(text)


def compile_filter(expr: str) -> Callable[[Dict], bool]:
    """Understands conjunctions of comparisons and (not) in lists, enough for the tests."""
    checks = []
    flat = (expr or "").replace("(", " ").replace(")", " ").strip()
    clauses = [c.strip() for c in re.split(r"\s+and\s+", flat) if c.strip()] if flat else []
    for clause in clauses:
        m = _IN.match(clause)
        if m is not None:
            name, op, body = m.groups()
            values = {_literal(v) for v in body.split(",") if v.strip()}
            negate = op.startswith("not")
            checks.append(lambda row, n=name, vs=values, neg=negate: (row.get(n) in vs) != neg)
            continue
        m = _COMPARE.match(clause)
        if m is None:
            raise ValueError(f"fake server cannot parse {clause!r}")
        name, op, lit = m.groups()
        checks.append(
            lambda row, n=name, f=_OPS[op], v=_literal(lit): row.get(n) is not None
            and f(row.get(n), v)
        )
    return lambda row: all(check(row) for check in checks)


class FakeCollection:
    def __init__(self, name: str, collection_id: int, fields: List[FieldSchema]):
        self.name = name
        self.collection_id = collection_id
        self.schema = CollectionSchema(name=name, fields=list(fields))
        # pk -> (insert ts, row)
        self.rows: Dict[Any, Tuple[int, Dict]] = {}

    @property
    def pk_field(self) -> FieldSchema:
        return next(f for f in self.schema.fields if f.is_primary_key)

    @property
    def vector_field(self) -> Optional[FieldSchema]:
        for f in self.schema.fields:
            if f.data_type == DataType.FLOAT_VECTOR:
                return f
        return None


class FakeMilvusStub:
    """An in memory Milvus speaking the messages of milvus_pager.client.messages.

    Knobs:
      - ``session_ts_enabled``: report session timestamps, legacy servers report 0
      - ``query_overfetch``: iterator queries return this many times the asked limit
      - ``v2_supported``: answer search iterator v2 requests with a token
      - ``report_primary_field_name``: fill ``primary_field_name`` of search results
      - ``schema_mismatch_times``: number of writes answered with a schema mismatch
      - ``errors``: method name -> exceptions raised by the next calls, in order
      - ``write_statuses``: method name -> failed statuses answered to the next writes
    """

    def __init__(self):
        self.collections: Dict[str, FakeCollection] = {}
        self.requests: List[Tuple[str, Any]] = []
        self.session_ts_enabled = True
        self.query_overfetch = 1
        self.v2_supported = True
        self.report_primary_field_name = True
        self.schema_mismatch_times = 0
        self.errors: Dict[str, List[Exception]] = {}
        self.write_statuses: Dict[str, List[Status]] = {}
        self._ts = BASE_TS
        self._ids = itertools.count(1)
        self._tokens = itertools.count(1)
        self._v2_seen: Dict[str, set] = {}

    # helpers for tests

    def create_collection(self, name: str, fields: List[FieldSchema]) -> FakeCollection:
        coll = FakeCollection(name, 1000 + len(self.collections), fields)
        self.collections[name] = coll
        return coll

    def load_rows(self, name: str, rows: List[Dict]):
        coll = self.collections[name]
        ts = self._next_ts()
        pk = coll.pk_field.name
        for row in rows:
            coll.rows[row[pk]] = (ts, dict(row))

    def calls(self, method: str) -> List[Any]:
        return [req for name, req in self.requests if name == method]

    @property
    def current_ts(self) -> int:
        return self._ts

    def _next_ts(self) -> int:
        self._ts += 1 << LOGICAL_BITS
        return self._ts

    def _enter(self, method: str, request: Any):
        self.requests.append((method, request))
        pending = self.errors.get(method)
        if pending:
            raise pending.pop(0)

    def _session_ts(self, guarantee_ts: int) -> int:
        if not self.session_ts_enabled:
            return 0
        return guarantee_ts if guarantee_ts >= BASE_TS else self._ts

    @staticmethod
    def _not_found(name: str) -> Status:
        return Status(code=ErrorCode.COLLECTION_NOT_FOUND, reason=f"collection not found[{name}]")

    @staticmethod
    def _visible_rows(coll: FakeCollection, guarantee_ts: int) -> List[Dict]:
        if guarantee_ts >= BASE_TS:
            return [row for ts, row in coll.rows.values() if ts <= guarantee_ts]
        return [row for _, row in coll.rows.values()]

    @staticmethod
    def _columns(coll: FakeCollection, rows: List[Dict], names: List[str]):
        pk = coll.pk_field.name
        columns = []
        for f in coll.schema.fields:
            if f.name != pk and "*" not in names and f.name not in names:
                continue
            values = [row.get(f.name) for row in rows]
            valid = [v is not None for v in values] if f.nullable else None
            column = FieldData(f.name, f.data_type, values, f.dim, f.element_type, valid)
            columns.append(entity_helper.field_data_to_proto(column))
        return columns

    # rpc surface

    def DescribeCollection(self, request, timeout=None):
        self._enter("DescribeCollection", request)
        coll = self.collections.get(request.collection_name)
        if coll is None:
            return DescribeCollectionResponse(status=self._not_found(request.collection_name))
        return DescribeCollectionResponse(
            schema=coll.schema,
            collection_id=coll.collection_id,
            collection_name=coll.name,
            db_name=request.db_name,
        )

    def DropCollection(self, request, timeout=None):
        self._enter("DropCollection", request)
        if self.collections.pop(request.collection_name, None) is None:
            return self._not_found(request.collection_name)
        return Status()

    def Query(self, request, timeout=None):
        self._enter("Query", request)
        coll = self.collections.get(request.collection_name)
        if coll is None:
            return QueryResults(status=self._not_found(request.collection_name))

        pk = coll.pk_field.name
        match = compile_filter(request.expr)
        rows = sorted(
            (r for r in self._visible_rows(coll, request.guarantee_timestamp) if match(r)),
            key=lambda r: r[pk],
        )
        offset = int(request.get_param("offset") or 0)
        limit = request.get_param("limit")
        if limit is not None:
            count = int(limit)
            if request.get_param("iterator") == "True":
                count *= self.query_overfetch
            rows = rows[offset : offset + count]
        else:
            rows = rows[offset:]

        return QueryResults(
            fields_data=self._columns(coll, rows, request.output_fields),
            collection_name=coll.name,
            output_fields=list(request.output_fields),
            session_ts=self._session_ts(request.guarantee_timestamp),
        )

    def Search(self, request, timeout=None):
        self._enter("Search", request)
        coll = self.collections.get(request.collection_name)
        if coll is None:
            return SearchResults(status=self._not_found(request.collection_name))

        params = {kv.key: kv.value for kv in request.search_params}
        inner = ujson.loads(params.get("params", "{}"))
        metric = params.get("metric_type", "L2")
        positive = metric in ("L2", "JACCARD", "HAMMING", "TANIMOTO")
        radius, range_filter = inner.get("radius"), inner.get("range_filter")
        topk = int(params["topk"])
        is_v2 = params.get("search_iter_v2") == "True"

        pk = coll.pk_field.name
        vec = coll.vector_field.name
        placeholder = request.placeholder_group
        dim = placeholder.dim
        targets = [placeholder.data[i * dim : (i + 1) * dim] for i in range(request.nq)]
        match = compile_filter(request.dsl)
        visible = [r for r in self._visible_rows(coll, request.guarantee_timestamp) if match(r)]

        all_hits: List[Tuple[Dict, float]] = []
        topks = []
        v2_results = None
        for target in targets:
            hits = []
            for row in visible:
                if positive:
                    score = sum((a - b) ** 2 for a, b in zip(row[vec], target))
                    if radius is not None and not score < radius:
                        continue
                    if range_filter is not None and not score >= range_filter:
                        continue
                else:
                    score = sum(a * b for a, b in zip(row[vec], target))
                    if radius is not None and not score > radius:
                        continue
                    if range_filter is not None and not score <= range_filter:
                        continue
                hits.append((row, score))
            hits.sort(key=lambda h: ((h[1] if positive else -h[1]), h[0][pk]))

            if is_v2 and self.v2_supported:
                token = params.get("search_iter_id") or f"token-{next(self._tokens)}"
                seen = self._v2_seen.setdefault(token, set())
                hits = [h for h in hits if h[0][pk] not in seen]
                hits = hits[: int(params.get("search_iter_batch_size", topk))]
                seen.update(h[0][pk] for h in hits)
                last_bound = hits[-1][1] if hits else float(params.get("search_iter_last_bound", 0))
                v2_results = SearchIteratorV2Results(token=token, last_bound=last_bound)
            else:
                hits = hits[:topk]
            all_hits.extend(hits)
            topks.append(len(hits))

        rows = [h[0] for h in all_hits]
        pks = [r[pk] for r in rows]
        if coll.pk_field.data_type == DataType.VARCHAR:
            ids = IDs(str_id=pks)
        else:
            ids = IDs(int_id=pks)
        fields_data = [
            f for f in self._columns(coll, rows, request.output_fields) if f.field_name != pk
        ]
        data = SearchResultData(
            num_queries=request.nq,
            top_k=topk,
            fields_data=fields_data,
            scores=[h[1] for h in all_hits],
            ids=ids,
            topks=topks,
            output_fields=list(request.output_fields),
            primary_field_name=pk if self.report_primary_field_name else "",
            search_iterator_v2_results=v2_results,
        )
        return SearchResults(
            results=data,
            collection_name=coll.name,
            session_ts=self._session_ts(request.guarantee_timestamp),
        )

    def _write(self, method: str, request):
        self._enter(method, request)
        coll = self.collections.get(request.collection_name)
        if coll is None:
            return MutationResult(status=self._not_found(request.collection_name))
        if self.write_statuses.get(method):
            return MutationResult(status=self.write_statuses[method].pop(0))
        if self.schema_mismatch_times > 0:
            self.schema_mismatch_times -= 1
            return MutationResult(
                status=Status(code=ErrorCode.SCHEMA_MISMATCH, reason="schema mismatch")
            )

        columns = [entity_helper.field_data_from_proto(f) for f in request.fields_data]
        pk = coll.pk_field.name
        ts = self._next_ts()
        pks = []
        for i in range(request.num_rows):
            row = {c.name: c.values[i] for c in columns}
            if pk not in row:
                row[pk] = next(self._ids)
            coll.rows[row[pk]] = (ts, row)
            pks.append(row[pk])

        if coll.pk_field.data_type == DataType.VARCHAR:
            ids = IDs(str_id=pks)
        else:
            ids = IDs(int_id=pks)
        count = len(pks)
        return MutationResult(
            ids=ids,
            succ_index=list(range(count)),
            insert_cnt=count if method == "Insert" else 0,
            upsert_cnt=count if method == "Upsert" else 0,
            timestamp=ts,
        )

    def Insert(self, request, timeout=None):
        return self._write("Insert", request)

    def Upsert(self, request, timeout=None):
        return self._write("Upsert", request)

    def Delete(self, request, timeout=None):
        self._enter("Delete", request)
        coll = self.collections.get(request.collection_name)
        if coll is None:
            return MutationResult(status=self._not_found(request.collection_name))
        match = compile_filter(request.expr)
        doomed = [key for key, (_, row) in coll.rows.items() if match(row)]
        for key in doomed:
            del coll.rows[key]
        return MutationResult(delete_cnt=len(doomed), timestamp=self._next_ts())


def int_pk_fields(dim: int = 2) -> List[FieldSchema]:
    return [
        FieldSchema("id", DataType.INT64, is_primary_key=True),
        FieldSchema("age", DataType.INT64),
        FieldSchema("name", DataType.VARCHAR, nullable=True),
        FieldSchema("vec", DataType.FLOAT_VECTOR, dim=dim),
    ]


def str_pk_fields(dim: int = 2) -> List[FieldSchema]:
    return [
        FieldSchema("key", DataType.VARCHAR, is_primary_key=True),
        FieldSchema("age", DataType.INT64),
        FieldSchema("vec", DataType.FLOAT_VECTOR, dim=dim),
    ]


def int_rows(count: int) -> List[Dict]:
    # the distance of row i to [0.0, 0.0] is i * i under L2
    return [
        {"id": i, "age": i % 100, "name": f"name_{i}", "vec": [float(i), 0.0]}
        for i in range(count)
    ]


