from typing import Any, Callable, Dict

from milvus_pager.exceptions import ParamError

from . import entity_helper
from .constants import MAX_BATCH_SIZE, UNLIMITED


def is_legal_table_name(table_name: Any) -> bool:
    return bool(table_name) and isinstance(table_name, str)


def is_legal_db_name(db_name: Any) -> bool:
    # you can connect to the default database "".
    return isinstance(db_name, str)


def is_legal_field_name(field_name: Any) -> bool:
    return bool(field_name) and isinstance(field_name, str)


def is_legal_timeout(timeout: Any) -> bool:
    return timeout is None or isinstance(timeout, (int, float))


def is_legal_topk(topk: Any) -> bool:
    return not isinstance(topk, bool) and isinstance(topk, int) and topk > 0


def is_legal_limit(limit: Any) -> bool:
    return limit is None or (not isinstance(limit, bool) and isinstance(limit, int) and limit >= 0)


def is_legal_offset(offset: Any) -> bool:
    if offset is None:
        return True
    return not isinstance(offset, bool) and isinstance(offset, int) and offset >= 0


def is_legal_iterator_limit(limit: Any) -> bool:
    return not isinstance(limit, bool) and isinstance(limit, int) and limit >= UNLIMITED


def is_legal_batch_size(batch_size: Any) -> bool:
    return (
        not isinstance(batch_size, bool)
        and isinstance(batch_size, int)
        and 0 < batch_size <= MAX_BATCH_SIZE
    )


def is_legal_partition_name(tag: Any) -> bool:
    return tag is not None and isinstance(tag, str)


def is_legal_partition_name_array(tag_array: Any) -> bool:
    if tag_array is None:
        return True

    if not isinstance(tag_array, list):
        return False

    return all(is_legal_partition_name(tag) for tag in tag_array)


def is_legal_output_fields(output_fields: Any) -> bool:
    if output_fields is None:
        return True

    if not isinstance(output_fields, list):
        return False

    return all(is_legal_field_name(field) for field in output_fields)


def is_legal_anns_field(field: Any) -> bool:
    return field is None or isinstance(field, str)


def is_legal_search_data(data: Any) -> bool:
    import numpy as np

    if entity_helper.entity_is_sparse_matrix(data):
        return True

    if not isinstance(data, (list, np.ndarray)):
        return False

    return all(isinstance(vector, (list, bytes, np.ndarray, dict)) for vector in data)


def is_legal_round_decimal(round_decimal: Any) -> bool:
    return isinstance(round_decimal, int) and -2 < round_decimal < 7


def is_legal_guarantee_timestamp(ts: Any) -> bool:
    return ts is None or isinstance(ts, int) and ts >= 0


def is_legal_filter(expr: Any) -> bool:
    return expr is None or isinstance(expr, str)


def _raise_param_error(param_name: str, param_value: Any) -> None:
    raise ParamError(message=f"`{param_name}` value {param_value} is illegal")


_CHECKERS: Dict[str, Callable[[Any], bool]] = {
    "db_name": is_legal_db_name,
    "collection_name": is_legal_table_name,
    "field_name": is_legal_field_name,
    "topk": is_legal_topk,
    "limit": is_legal_limit,
    "offset": is_legal_offset,
    "iterator_limit": is_legal_iterator_limit,
    "batch_size": is_legal_batch_size,
    "partition_name": is_legal_partition_name,
    "partition_name_array": is_legal_partition_name_array,
    "anns_field": is_legal_anns_field,
    "search_data": is_legal_search_data,
    "output_fields": is_legal_output_fields,
    "round_decimal": is_legal_round_decimal,
    "guarantee_timestamp": is_legal_guarantee_timestamp,
    "timeout": is_legal_timeout,
    "filter": is_legal_filter,
}


def check_pass_param(*_args: Any, **kwargs: Any) -> None:
    for key, value in kwargs.items():
        checker = _CHECKERS.get(key)
        if checker is None:
            raise ParamError(message=f"unknown param `{key}`")
        if not checker(value):
            _raise_param_error(key, value)
