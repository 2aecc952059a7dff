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

from enum import IntEnum
from typing import Optional

import grpc


class ErrorCode(IntEnum):
    SUCCESS = 0
    UNEXPECTED_ERROR = 1
    RATE_LIMIT = 8
    FORCE_DENY = 9
    COLLECTION_NOT_FOUND = 100
    INDEX_NOT_FOUND = 700
    SCHEMA_MISMATCH = 1101


class LegacyErrorCode(IntEnum):
    """The `error_code` field reported by servers older than 2.3"""

    Success = 0
    UnexpectedError = 1
    ForceDeny = 48
    RateLimit = 49
    SchemaMismatch = 52


class MilvusException(Exception):
    def __init__(
        self,
        code: int = ErrorCode.UNEXPECTED_ERROR,
        message: str = "",
        compatible_code: int = LegacyErrorCode.UnexpectedError,
    ) -> None:
        super().__init__()
        self._code = code
        self._message = message
        # for compatibility with servers that only report the legacy error_code
        self._compatible_code = compatible_code

    @property
    def code(self):
        return self._code

    @property
    def message(self):
        return self._message

    @property
    def compatible_code(self):
        return self._compatible_code

    def __str__(self) -> str:
        return f"<{type(self).__name__}: (code={self.code}, message={self.message})>"


class ParamError(MilvusException):
    """Raise when params are incorrect"""


class DataSchemaMismatchException(MilvusException):
    """Raise when the server reports that the data doesn't match the collection schema"""


class ServerVersionIncompatibleException(MilvusException):
    """Raise when server version is incompatible"""


NotSupportedException = ServerVersionIncompatibleException


class MilvusTimeoutException(MilvusException):
    """Raise when the retry times or the retry timeout is exhausted"""


class RpcFailedException(MilvusException):
    """Raise when the transport reports an error that cannot be retried"""

    def __init__(
        self,
        code: int = ErrorCode.UNEXPECTED_ERROR,
        message: str = "",
        compatible_code: int = LegacyErrorCode.UnexpectedError,
        rpc_code: Optional[grpc.StatusCode] = None,
    ) -> None:
        super().__init__(code, message, compatible_code)
        self._rpc_code = rpc_code

    @property
    def rpc_code(self):
        return self._rpc_code


class UnknownErrorException(MilvusException):
    """Raise when an internal invariant is broken, e.g. a page without primary keys"""


class DataTypeNotSupportException(MilvusException):
    """Raise when datatype isn't supported"""


class DataNotMatchException(MilvusException):
    """Raise when two columns of data cannot be merged"""


class ExceptionsMessage:
    EnvConfigErr = "Environment variable %s has a wrong format, please check it: %s"
    BatchSizeInvalid = "batch size must be larger than zero"
    BatchSizeTooLarge = "batch size cannot be larger than %s"
    LimitInvalid = "limit must be -1(unlimited) or a positive value, got %s"
    OffsetInvalid = "offset cannot be negative, got %s"
    SearchIteratorOffset = "Not support offset when searching iteration"
    SearchIteratorV2Offset = "Offset is not supported for search_iterator_v2"
    EfLessThanBatchSize = (
        "When using hnsw index, provided ef must be larger than or equal to batch size"
    )
    MetricTypeMissing = "Must specify metrics type for search iterator"
    RadiusLargerThanRangeFilter = (
        "%s metric type, radius must be larger than range_filter, please adjust your parameter"
    )
    RadiusSmallerThanRangeFilter = (
        "%s metric type, radius must be smaller than range_filter, please adjust your parameter"
    )
    SearchIteratorEmptyInit = (
        "Cannot init search iterator because init page contains no matched rows, "
        "please check the radius and range_filter set up by searchParams"
    )
    FilteredIdsTooMany = (
        "filtered ids length has accumulated to more than %s, "
        "there is a danger of overly memory consumption"
    )
    PrimaryKeyNotInResults = "Primary key not found in query results"
    EmptySearchResults = "the server returns an empty search result"
    UnexpectedSearchResults = "the server returns an unexpected search result"
    FieldsRowCountInconsistent = "The length of fields data is inconsistent"
    IllegalCopyRange = "illegal copy range [%s, %s) for %s rows"
    FieldDataNotMatch = "Cannot append field data %r(%s) to field data %r(%s)"
    DataTypeNotSupport = "Data type %r is not supported."
    SparseIndexInvalid = "sparse vector index must be positive and less than 2^32-1: %s"
    SparseValueNaN = "sparse vector value must not be NaN"
    SparseBytesInvalid = "The length of data must be a multiple of 8, got %s"
    UnknownMetricType = "unsupported metrics type for search iteration: %s"
    SearchIteratorV2FallbackWarning = """
    The server does not support Search Iterator V2. The search_iterator (v1) is used instead.
    Please upgrade your Milvus server version to 2.5.2 and later.
    """
    JSONKeyMustBeStr = "JSON key must be str."
    SingleVectorOnly = "search iterator does not support processing multiple vectors simultaneously"
    EmptySearchVectors = "The vector data for search cannot be empty"
    CollectionNameEmpty = "collection name cannot be empty"
