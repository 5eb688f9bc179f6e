import abc
import asyncio
import enum
import errno
import logging
import os
import shutil
import stat as statmodule
from collections.abc import AsyncIterator, Iterator
from concurrent.futures import ThreadPoolExecutor
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass
from itertools import islice
from pathlib import Path, PurePath
from types import TracebackType
from typing import Any, Callable, Optional, TypeVar

import aiofiles


SCANDIR_CHUNK_SIZE = 100

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


class StorageType(str, enum.Enum):
    LOCAL = "local"


class FileStatusType(str, enum.Enum):
    DIRECTORY = "DIRECTORY"
    FILE = "FILE"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class FileStatus:
    path: PurePath
    type: FileStatusType
    size: int
    modification_time: float

    @property
    def is_dir(self) -> bool:
        return self.type == FileStatusType.DIRECTORY

    @classmethod
    def from_stat(cls, path: PurePath, st: os.stat_result) -> "FileStatus":
        if statmodule.S_ISDIR(st.st_mode):
            return cls(
                path=path,
                type=FileStatusType.DIRECTORY,
                size=0,
                modification_time=st.st_mtime,
            )
        return cls(
            path=path,
            type=FileStatusType.FILE,
            size=st.st_size,
            modification_time=st.st_mtime,
        )


class FileSystem(AbstractAsyncContextManager):  # type: ignore
    @classmethod
    def create(cls, type_: StorageType, *args: Any, **kwargs: Any) -> "FileSystem":
        if type_ == StorageType.LOCAL:
            return LocalFileSystem(**kwargs)
        raise ValueError(f"Unsupported storage type: {type_}")

    async def __aenter__(self) -> "FileSystem":
        await self.init()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> Optional[bool]:
        await self.close()
        return None

    @abc.abstractmethod
    async def init(self) -> None:
        pass

    @abc.abstractmethod
    async def close(self) -> None:
        pass

    # Actual return type is an async version of io.FileIO
    @abc.abstractmethod
    def open(self, path: PurePath, mode: str = "rb") -> Any:
        pass

    @abc.abstractmethod
    async def mkdir(self, path: PurePath, *, exist_ok: bool = True) -> None:
        pass

    @abc.abstractmethod
    def iterstatus(
        self, path: PurePath
    ) -> AbstractAsyncContextManager[AsyncIterator[FileStatus]]:
        pass

    async def liststatus(self, path: PurePath) -> list[FileStatus]:
        async with self.iterstatus(path) as dir_iter:
            return [status async for status in dir_iter]

    @abc.abstractmethod
    async def get_filestatus(self, path: PurePath) -> FileStatus:
        pass

    @abc.abstractmethod
    async def fstat(self, f: Any) -> FileStatus:
        """Return the status of an already opened file."""

    @abc.abstractmethod
    async def exists(self, path: PurePath) -> bool:
        pass

    @abc.abstractmethod
    async def remove(
        self, path: PurePath, *, recursive: bool = False, missing_ok: bool = False
    ) -> None:
        pass

    @abc.abstractmethod
    async def rename(self, old: PurePath, new: PurePath) -> None:
        pass

    @abc.abstractmethod
    async def replace(self, old: PurePath, new: PurePath) -> None:
        pass

    @abc.abstractmethod
    async def link(self, src: PurePath, dst: PurePath) -> None:
        """Publish src under dst, failing with FileExistsError if dst is taken."""

    @abc.abstractmethod
    async def touch(self, path: PurePath) -> None:
        pass


class LocalFileSystem(FileSystem):
    def __init__(
        self,
        *,
        executor_max_workers: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        self._executor_max_workers = executor_max_workers
        self._executor: Optional[ThreadPoolExecutor] = None

    async def init(self) -> None:
        self._executor = ThreadPoolExecutor(
            max_workers=self._executor_max_workers,
            thread_name_prefix="LocalFileSystemThread",
        )
        logger.info(
            "Initialized LocalFileSystem with a thread pool of size %s",
            self._executor_max_workers,
        )

    async def close(self) -> None:
        if self._executor:
            self._executor.shutdown()
            self._executor = None

    async def _run(self, func: Callable[..., _T], *args: Any) -> _T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, func, *args)

    # Actual return type is an async version of io.FileIO
    @asynccontextmanager
    async def open(self, path: PurePath, mode: str = "rb") -> Any:
        async with aiofiles.open(path, mode=mode, executor=self._executor) as f:
            yield f

    def _mkdir(self, path: PurePath, exist_ok: bool) -> None:
        real_path = Path(path)
        try:
            real_path.mkdir(parents=True, exist_ok=False)
        except FileExistsError:
            if not exist_ok:
                raise
            if not real_path.is_dir() or real_path.is_symlink():
                raise NotADirectoryError(
                    errno.ENOTDIR, "Not a directory", str(path)
                ) from None

    async def mkdir(self, path: PurePath, *, exist_ok: bool = True) -> None:
        await self._run(self._mkdir, path, exist_ok)

    def _scandir_iter(self, path: PurePath) -> Iterator[FileStatus]:
        with os.scandir(path) as scandir_it:
            for entry in scandir_it:
                if entry.is_symlink():
                    continue
                yield FileStatus.from_stat(
                    PurePath(entry.name), entry.stat(follow_symlinks=False)
                )

    async def _iterate_in_chunks(
        self, it: Iterator[FileStatus], chunk_size: int
    ) -> AsyncIterator[list[FileStatus]]:
        while True:
            chunk = await self._run(list, islice(it, 0, chunk_size))
            if not chunk:
                break
            yield chunk
            if len(chunk) < chunk_size:
                break

    async def _iterstatus_iter(
        self, dir_iter: Iterator[FileStatus]
    ) -> AsyncIterator[FileStatus]:
        async for chunk in self._iterate_in_chunks(dir_iter, SCANDIR_CHUNK_SIZE):
            for status in chunk:
                yield status

    @asynccontextmanager
    async def iterstatus(
        self, path: PurePath
    ) -> AsyncIterator[AsyncIterator[FileStatus]]:
        if not (await self.get_filestatus(path)).is_dir:
            raise NotADirectoryError(errno.ENOTDIR, "Not a directory", str(path))
        dir_iter = self._scandir_iter(path)
        try:
            yield self._iterstatus_iter(dir_iter)
        finally:
            await self._run(dir_iter.close)  # type: ignore

    def _get_filestatus(self, path: PurePath) -> FileStatus:
        st = os.stat(path, follow_symlinks=False)
        if statmodule.S_ISLNK(st.st_mode):
            raise FileNotFoundError(
                errno.ENOENT, "No such file or directory", str(path)
            )
        return FileStatus.from_stat(path, st)

    async def get_filestatus(self, path: PurePath) -> FileStatus:
        return await self._run(self._get_filestatus, path)

    async def fstat(self, f: Any) -> FileStatus:
        st = await self._run(os.fstat, f.fileno())
        return FileStatus.from_stat(PurePath(f.name), st)

    async def exists(self, path: PurePath) -> bool:
        return await self._run(os.path.lexists, path)

    def _remove(self, path: PurePath, recursive: bool, missing_ok: bool) -> None:
        try:
            st = os.stat(path, follow_symlinks=False)
        except FileNotFoundError:
            if missing_ok:
                return
            raise
        if not statmodule.S_ISDIR(st.st_mode):
            os.unlink(path)
            return
        if not recursive:
            raise IsADirectoryError(
                errno.EISDIR, "Is a directory, use recursive remove", str(path)
            )
        shutil.rmtree(path)

    async def remove(
        self, path: PurePath, *, recursive: bool = False, missing_ok: bool = False
    ) -> None:
        await self._run(self._remove, path, recursive, missing_ok)

    async def rename(self, old: PurePath, new: PurePath) -> None:
        await self._run(os.rename, old, new)

    async def replace(self, old: PurePath, new: PurePath) -> None:
        await self._run(os.replace, old, new)

    async def link(self, src: PurePath, dst: PurePath) -> None:
        await self._run(os.link, src, dst)

    async def touch(self, path: PurePath) -> None:
        await self._run(os.utime, path)


DEFAULT_CHUNK_SIZE = 1 * 1024 * 1024  # 1 MB


async def copy_streams(
    outstream: Any,
    instream: Any,
    *,
    size: Optional[int] = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> None:
    """perform chunked copying of data between two streams.

    It is assumed that stream implementations would handle retries themselves.
    """
    if size is None:
        while True:
            chunk = await outstream.read(chunk_size)
            if not chunk:
                break
            await instream.write(chunk)
    else:
        while size > 0:
            chunk = await outstream.read(min(size, chunk_size))
            if not chunk:
                break
            size -= len(chunk)
            await instream.write(chunk)
