import datetime
import threading
from typing import Dict, Optional, Tuple

from .constants import BOUNDED_TS, EVENTUALLY_TS, STRONG_TS
from .types import ConsistencyLevel, get_consistency_level
from .utils import hybridts_to_unixtime


class GTsDict:
    """Last write timestamp per (database, collection).

    A client owns one registry and hands it to the calls that read or write through it.
    ``default_gts_dict()`` returns the registry shared by clients that were not given one.
    """

    def __init__(self) -> None:
        # (db name, collection name) -> last write ts
        self._last_write_ts_dict: Dict[Tuple[str, str], int] = {}
        self._last_write_ts_dict_lock = threading.Lock()

    def __repr__(self) -> str:
        with self._last_write_ts_dict_lock:
            return self._last_write_ts_dict.__repr__()

    def __len__(self) -> int:
        with self._last_write_ts_dict_lock:
            return len(self._last_write_ts_dict)

    def update(self, db_name: str, collection_name: str, ts: int):
        key = (db_name, collection_name)
        with self._last_write_ts_dict_lock:
            if key not in self._last_write_ts_dict or ts > self._last_write_ts_dict[key]:
                self._last_write_ts_dict[key] = ts

    def get(self, db_name: str, collection_name: str) -> Optional[int]:
        with self._last_write_ts_dict_lock:
            return self._last_write_ts_dict.get((db_name, collection_name))

    def remove(self, db_name: str, collection_name: str):
        with self._last_write_ts_dict_lock:
            self._last_write_ts_dict.pop((db_name, collection_name), None)

    def clear(self):
        with self._last_write_ts_dict_lock:
            self._last_write_ts_dict.clear()


_default_gts_dict = GTsDict()


def default_gts_dict() -> GTsDict:
    return _default_gts_dict


def get_eventually_ts():
    return EVENTUALLY_TS


def get_bounded_ts():
    return BOUNDED_TS


# Get the last write ts of collection, 0 if nothing has been written yet.
def get_collection_ts(registry: GTsDict, db_name: str, collection_name: str) -> int:
    return registry.get(db_name, collection_name) or 0


# Get the last write datetime of collection.
def get_collection_datetime(
    registry: GTsDict,
    db_name: str,
    collection_name: str,
    tz: Optional[datetime.timezone] = None,
):
    timestamp = hybridts_to_unixtime(get_collection_ts(registry, db_name, collection_name))
    return datetime.datetime.fromtimestamp(timestamp, tz=tz)


def construct_guarantee_ts(
    registry: GTsDict,
    db_name: str,
    collection_name: str,
    consistency_level: Optional[ConsistencyLevel] = None,
    guarantee_timestamp: Optional[int] = None,
) -> Tuple[int, bool]:
    """Return the guarantee timestamp of a read and whether the default consistency applies.

    Never raises for a missing registry entry, reads fall back to the eventually timestamp.
    """
    if consistency_level is None:
        # the default consistency of the collection may be Session, so the cached
        # mutation ts is used when there is one
        ts = get_collection_ts(registry, db_name, collection_name) or get_eventually_ts()
        return ts, True

    consistency_level = get_consistency_level(consistency_level)
    if consistency_level == ConsistencyLevel.Strong:
        # Milvus will assign a newest ts.
        return STRONG_TS, False
    if consistency_level == ConsistencyLevel.Session:
        # Using the last write ts of the collection.
        return get_collection_ts(registry, db_name, collection_name) or get_eventually_ts(), False
    if consistency_level == ConsistencyLevel.Bounded:
        # Milvus will assign ts according to the server timestamp and a configured time interval
        return get_bounded_ts(), False
    if consistency_level == ConsistencyLevel.Customized and guarantee_timestamp is not None:
        return guarantee_timestamp, False
    return get_eventually_ts(), False
