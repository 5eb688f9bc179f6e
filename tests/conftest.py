import os.path
import tempfile
from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import pytest
import pytest_asyncio

from platform_nfs_api.fs.local import FileSystem, LocalFileSystem
from platform_nfs_api.resolver import NfsPathResolver
from platform_nfs_api.storage import NfsStorage


@pytest_asyncio.fixture
async def local_fs() -> AsyncIterator[FileSystem]:
    async with LocalFileSystem() as fs:
        yield fs


@pytest.fixture
def local_tmp_dir_path() -> Iterator[Path]:
    with tempfile.TemporaryDirectory() as d:
        yield Path(os.path.realpath(d))


@pytest.fixture
def resolver(local_tmp_dir_path: Path) -> NfsPathResolver:
    return NfsPathResolver(local_tmp_dir_path)


@pytest_asyncio.fixture
async def storage(local_fs: FileSystem, resolver: NfsPathResolver) -> NfsStorage:
    storage = NfsStorage(local_fs, resolver)
    await storage.init()
    return storage
