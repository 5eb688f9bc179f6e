import enum
import logging
import re
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import Any, Optional

from neuro_logging import trace, trace_cm

from .content import ByteRange, ContentStore, RangeSpec
from .directory import DirectoryIndex, DirectoryListing
from .errors import (
    InvalidFieldTypeError,
    MissingParameterError,
    NfsDirectoryNotFoundError,
    NfsFileExistsError,
)
from .fs.local import FileSystem
from .locks import PathLocks
from .metadata import MetadataStore
from .record import DEFAULT_CONTENT_TYPE, FileRecord, RecordHeader
from .resolver import CanonicalLocation, NfsPathResolver


logger = logging.getLogger(__name__)

MAX_METADATA_SIZE = 8190

_FORBIDDEN_HEADER_CHARS = re.compile(r"[\x00-\x08\x0a-\x1f\x7f]")


class FileAction(str, enum.Enum):
    MOVE = "MOVE"
    COPY = "COPY"

    @classmethod
    def values(cls) -> list[str]:
        return [item.value for item in cls]


def _validate_metadata(metadata: Any) -> Optional[str]:
    if metadata is None:
        return None
    if not isinstance(metadata, str):
        raise InvalidFieldTypeError("metadata")
    if "\r" in metadata or "\n" in metadata:
        raise InvalidFieldTypeError("metadata", "should not contain line breaks")
    # returned verbatim in the Metadata response header
    if _FORBIDDEN_HEADER_CHARS.search(metadata):
        raise InvalidFieldTypeError(
            "metadata", "should not contain control characters"
        )
    if len(metadata.encode("utf-8")) > MAX_METADATA_SIZE:
        raise InvalidFieldTypeError("metadata", "too long")
    return metadata


def _validate_name(name: Any) -> Optional[str]:
    if name is None:
        return None
    if not isinstance(name, str):
        raise InvalidFieldTypeError("name")
    if not name or "/" in name or "\x00" in name or name in (".", ".."):
        raise InvalidFieldTypeError("name", "should be a valid file name")
    return name


class NfsStorage:
    def __init__(self, fs: FileSystem, resolver: NfsPathResolver) -> None:
        self._fs = fs
        self._resolver = resolver
        self._locks = PathLocks()
        self.content = ContentStore(fs, resolver)
        self.metadata = MetadataStore(fs, resolver, self.content)
        self.directories = DirectoryIndex(fs, resolver, self.metadata)

    @property
    def resolver(self) -> NfsPathResolver:
        return self._resolver

    async def init(self) -> None:
        await self._fs.mkdir(self._resolver.roots_path)
        await self._fs.mkdir(self._resolver.tmp_path)

    @trace
    async def create_file(
        self,
        location: CanonicalLocation,
        instream: Any,
        *,
        content_type: Optional[str] = None,
        metadata: Optional[str] = None,
    ) -> None:
        metadata = _validate_metadata(metadata) or ""
        header = RecordHeader(
            content_type=content_type or DEFAULT_CONTENT_TYPE,
            metadata=metadata,
            created_on=time.time(),
        )
        async with self._locks.acquire(location.key):
            await self.directories.ensure_parent(location)
            await self.content.write(location, instream, header)

    @trace
    async def get_file(self, location: CanonicalLocation) -> FileRecord:
        return await self.metadata.get(location)

    @asynccontextmanager
    async def open_file(
        self, location: CanonicalLocation, spec: Optional[RangeSpec] = None
    ) -> AsyncIterator[tuple[FileRecord, ByteRange, Any]]:
        async with trace_cm("NfsStorage.open_file"):
            async with self.content.read_range(location, spec) as result:
                yield result

    @trace
    async def delete_file(self, location: CanonicalLocation) -> None:
        async with self._locks.acquire(location.key):
            await self.metadata.delete(location)

    @trace
    async def update_file_metadata(
        self,
        location: CanonicalLocation,
        *,
        name: Any = None,
        metadata: Any = None,
    ) -> FileRecord:
        if name is None and metadata is None:
            raise MissingParameterError()
        metadata = _validate_metadata(metadata)
        name = _validate_name(name)

        target = location
        if name is not None and name != location.name:
            target = location.parent.joinpath(name)

        async with self._locks.acquire(location.key, target.key):
            await self.metadata.get(location)
            if target != location and await self._fs.exists(
                self._resolver.to_real_path(target)
            ):
                raise NfsFileExistsError()
            if metadata is not None or target == location:
                await self.metadata.update(location, metadata=metadata)
            if target != location:
                await self.metadata.relocate(location, target)
            return await self.metadata.get(target)

    @trace
    async def move_or_copy(
        self,
        src: CanonicalLocation,
        dst_dir: CanonicalLocation,
        action: FileAction = FileAction.MOVE,
    ) -> FileRecord:
        dst = dst_dir.joinpath(src.name)
        async with self._locks.acquire(src.key, dst.key):
            record = await self.metadata.get(src)
            if not await self.directories.exists(dst_dir):
                raise NfsDirectoryNotFoundError()
            if action == FileAction.MOVE:
                await self.metadata.relocate(src, dst)
            else:
                if await self._fs.exists(self._resolver.to_real_path(dst)):
                    raise NfsFileExistsError()
                header = replace(record.header, created_on=time.time())
                await self.content.duplicate(src, dst, header)
                logger.info("Copied %s to %s", src, dst)
            return await self.metadata.get(dst)

    @trace
    async def create_directory(self, location: CanonicalLocation) -> None:
        async with self._locks.acquire(location.key):
            await self.directories.mkdir(location)

    @trace
    async def get_directory(self, location: CanonicalLocation) -> DirectoryListing:
        return await self.directories.get(location)

    @trace
    async def delete_directory(self, location: CanonicalLocation) -> None:
        async with self._locks.acquire(location.key):
            await self.directories.rmdir(location)
