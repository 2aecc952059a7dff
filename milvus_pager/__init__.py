# Copyright (C) 2019-2021 Zilliz. All rights reserved.
#
# Licensed under the Apache License, Version 2.0 (the "License"); you may not use this file except
# in compliance with the License. You may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software distributed under the License
# is distributed on an "AS IS" BASIS, WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express
# or implied. See the License for the specific language governing permissions and limitations under
# the License.

from .client import __version__
from .client.abstract import MutationResult, QueryResults
from .client.field_data import FieldData
from .client.iterator import QueryIterator, SearchIterator
from .client.prepare import Prepare
from .client.search_iterator import SearchIteratorV2
from .client.search_result import Hit, SearchResult, SingleResult
from .client.ts_utils import GTsDict
from .client.types import ConsistencyLevel, DataType, PrimaryKeySchema
from .client.utils import hybridts_to_unixtime, mkts_from_datetime, mkts_from_hybridts
from .decorators import RetrySetting
from .exceptions import (
    ExceptionsMessage,
    MilvusException,
    MilvusTimeoutException,
    NotSupportedException,
    ParamError,
    RpcFailedException,
    ServerVersionIncompatibleException,
    UnknownErrorException,
)
from .milvus_client import MilvusClient

# Compatiable
from .settings import Config as DefaultConfig

__all__ = [
    "ConsistencyLevel",
    "DataType",
    "DefaultConfig",
    "ExceptionsMessage",
    "FieldData",
    "GTsDict",
    "Hit",
    "MilvusClient",
    "MilvusException",
    "MilvusTimeoutException",
    "MutationResult",
    "NotSupportedException",
    "ParamError",
    "Prepare",
    "PrimaryKeySchema",
    "QueryIterator",
    "QueryResults",
    "RetrySetting",
    "RpcFailedException",
    "SearchIterator",
    "SearchIteratorV2",
    "SearchResult",
    "ServerVersionIncompatibleException",
    "SingleResult",
    "UnknownErrorException",
    "__version__",
    "hybridts_to_unixtime",
    "mkts_from_datetime",
    "mkts_from_hybridts",
]
