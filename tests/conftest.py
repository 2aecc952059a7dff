import pytest
from utils import FakeMilvusStub

from milvus_pager.client.ts_utils import GTsDict
from milvus_pager.decorators import RetrySetting


@pytest.fixture
def stub():
    return FakeMilvusStub()


@pytest.fixture
def registry():
    return GTsDict()


@pytest.fixture
def no_retry():
    return RetrySetting(max_retry_times=1)


@pytest.fixture
def fast_retry():
    return RetrySetting(max_retry_times=5, initial_backoff_ms=1, max_backoff_ms=2)
