from contextlib import suppress
from importlib.metadata import PackageNotFoundError, version

__version__ = "0.0.0.dev"


with suppress(PackageNotFoundError):
    __version__ = version("milvus-pager")
