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

LOGICAL_BITS = 18
LOGICAL_BITS_MASK = (1 << LOGICAL_BITS) - 1
STRONG_TS = 0
EVENTUALLY_TS = 1
BOUNDED_TS = 2
DYNAMIC_FIELD_NAME = "$meta"
DEFAULT_PK_NAME = "pk"
SCORE_FIELD_NAME = "score"

# request parameter keys
REDUCE_STOP_FOR_BEST = "reduce_stop_for_best"
COLLECTION_ID = "collection_id"
ITERATOR_FIELD = "iterator"
ITERATOR_SESSION_TS_FIELD = "iterator_session_ts"
ITER_SEARCH_V2_KEY = "search_iter_v2"
ITER_SEARCH_BATCH_SIZE_KEY = "search_iter_batch_size"
ITER_SEARCH_LAST_BOUND_KEY = "search_iter_last_bound"
ITER_SEARCH_ID_KEY = "search_iter_id"
GUARANTEE_TIMESTAMP = "guarantee_timestamp"
TOPK = "topk"
OFFSET = "offset"
MILVUS_LIMIT = "limit"
ANNS_FIELD = "anns_field"
ROUND_DECIMAL = "round_decimal"
IGNORE_GROWING = "ignore_growing"
METRIC_TYPE = "metric_type"
PARAMS = "params"
RADIUS = "radius"
RANGE_FILTER = "range_filter"
EF = "ef"

# metric types
CALC_DIST_L2 = "L2"
CALC_DIST_IP = "IP"
CALC_DIST_BM25 = "BM25"
CALC_DIST_HAMMING = "HAMMING"
CALC_DIST_TANIMOTO = "TANIMOTO"
CALC_DIST_JACCARD = "JACCARD"
CALC_DIST_COSINE = "COSINE"

# iteration limits
MAX_FILTERED_IDS_COUNT_ITERATION = 100000
MAX_BATCH_SIZE: int = 16384
DEFAULT_SEARCH_EXTENSION_RATE: int = 10
UNLIMITED: int = -1
MAX_TRY_TIME: int = 20
MIN_SEARCH_WIDTH = 0.05
