import logging
import re
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from pathlib import PurePath
from typing import Any, Optional

from .errors import (
    InvalidRangeError,
    NfsFileExistsError,
    NfsFileNotFoundError,
    RangeNotSatisfiableError,
)
from .fs.local import FileSystem, copy_streams
from .record import FileRecord, RecordHeader
from .resolver import CanonicalLocation, NfsPathResolver


logger = logging.getLogger(__name__)

_RANGE_RE = re.compile(r"bytes=(\d*)-(\d*)")


@dataclass(frozen=True)
class RangeSpec:
    start: Optional[int]
    end: Optional[int]
    header: str = ""

    def __post_init__(self) -> None:
        if self.start is None and self.end is None:
            raise ValueError("Either start or end of a range must be set")


@dataclass(frozen=True)
class ByteRange:
    # both ends inclusive
    start: int
    end: int
    total: int
    partial: bool = False

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    @property
    def content_range(self) -> str:
        if not self.total:
            return "bytes */0"
        return f"bytes {self.start}-{self.end}/{self.total}"


def parse_range(value: Optional[str]) -> Optional[RangeSpec]:
    if value is None:
        return None
    m = _RANGE_RE.fullmatch(value.strip())
    if not m or not (m[1] or m[2]):
        raise InvalidRangeError(value)
    start = int(m[1]) if m[1] else None
    end = int(m[2]) if m[2] else None
    if start is not None and end is not None and start > end:
        raise InvalidRangeError(value)
    return RangeSpec(start=start, end=end, header=value)


def resolve_range(spec: Optional[RangeSpec], size: int) -> ByteRange:
    """Map a requested range onto a file of the given size.

    An end beyond the last byte is clamped rather than rejected.
    """
    if spec is None:
        return ByteRange(start=0, end=size - 1, total=size)
    if spec.start is None:
        assert spec.end is not None
        # suffix range: the last N bytes
        if not spec.end or not size:
            raise RangeNotSatisfiableError(spec.header, size)
        return ByteRange(
            start=max(size - spec.end, 0), end=size - 1, total=size, partial=True
        )
    if spec.start >= size:
        raise RangeNotSatisfiableError(spec.header, size)
    end = size - 1 if spec.end is None else min(spec.end, size - 1)
    return ByteRange(start=spec.start, end=end, total=size, partial=True)


class ContentStore:
    def __init__(self, fs: FileSystem, resolver: NfsPathResolver) -> None:
        self._fs = fs
        self._resolver = resolver

    async def _stage(
        self,
        header: RecordHeader,
        instream: Any,
        size: Optional[int] = None,
    ) -> PurePath:
        """Write a complete record into a temporary file.

        The temporary file lives outside of all namespaces and is removed if
        writing fails or is cancelled.
        """
        tmp_path = self._resolver.make_tmp_path()
        try:
            async with self._fs.open(tmp_path, "xb") as f:
                await f.write(header.encode())
                await copy_streams(instream, f, size=size)
        except BaseException:
            await self._fs.remove(tmp_path, missing_ok=True)
            raise
        return tmp_path

    async def _publish(self, tmp_path: PurePath, real_path: PurePath) -> None:
        try:
            await self._fs.link(tmp_path, real_path)
        except FileExistsError:
            raise NfsFileExistsError()
        except (FileNotFoundError, NotADirectoryError):
            raise NfsFileNotFoundError()
        finally:
            await self._fs.remove(tmp_path, missing_ok=True)

    async def write(
        self, location: CanonicalLocation, instream: Any, header: RecordHeader
    ) -> None:
        real_path = self._resolver.to_real_path(location)
        if await self._fs.exists(real_path):
            raise NfsFileExistsError()
        tmp_path = await self._stage(header, instream)
        await self._publish(tmp_path, real_path)
        logger.info("Stored %s", location)

    async def rewrite(self, location: CanonicalLocation, header: RecordHeader) -> None:
        """Replace the header of a record, keeping its content."""
        real_path = self._resolver.to_real_path(location)
        async with self._open_record(location) as (record, offset, f):
            tmp_path = await self._stage(header, f, size=record.size)
        try:
            await self._fs.replace(tmp_path, real_path)
        except BaseException:
            await self._fs.remove(tmp_path, missing_ok=True)
            raise

    async def duplicate(
        self, src: CanonicalLocation, dst: CanonicalLocation, header: RecordHeader
    ) -> None:
        real_path = self._resolver.to_real_path(dst)
        async with self._open_record(src) as (record, offset, f):
            tmp_path = await self._stage(header, f, size=record.size)
        await self._publish(tmp_path, real_path)

    @asynccontextmanager
    async def _open_record(
        self, location: CanonicalLocation
    ) -> AsyncIterator[tuple[FileRecord, int, Any]]:
        real_path = self._resolver.to_real_path(location)
        async with AsyncExitStack() as exit_stack:
            try:
                f = await exit_stack.enter_async_context(
                    self._fs.open(real_path, "rb")
                )
                fstat = await self._fs.fstat(f)
            except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
                raise NfsFileNotFoundError()
            if fstat.is_dir:
                raise NfsFileNotFoundError()
            header, offset = await RecordHeader.read_from(f)
            record = FileRecord.create(
                location.path,
                header,
                file_size=fstat.size,
                header_size=offset,
                last_modified=fstat.modification_time,
            )
            yield record, offset, f

    async def get_record(self, location: CanonicalLocation) -> FileRecord:
        async with self._open_record(location) as (record, _, _):
            return record

    @asynccontextmanager
    async def read_range(
        self, location: CanonicalLocation, spec: Optional[RangeSpec] = None
    ) -> AsyncIterator[tuple[FileRecord, ByteRange, Any]]:
        """Open a record positioned at the first byte of the requested range.

        Readers hold the file descriptor they opened, so a concurrent
        rename or replace of the record does not affect what they see.
        """
        async with self._open_record(location) as (record, offset, f):
            rng = resolve_range(spec, record.size)
            if rng.start:
                await f.seek(offset + rng.start)
            yield record, rng, f
