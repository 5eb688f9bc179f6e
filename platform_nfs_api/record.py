"""On-disk layout of a file record.

A record is stored as a single file: a length-prefixed CBOR header carrying
the immutable and user-editable attributes, followed by the raw content.

    +---------+----------------+------------------+
    | !I size | CBOR header    | content bytes    |
    +---------+----------------+------------------+

The size prefix counts itself, so the content starts at offset ``size``.
The last modification time is the modification time of the file itself.
"""

import struct
from dataclasses import dataclass, replace
from pathlib import PurePath
from typing import Any

import cbor

from .errors import CorruptedRecordError


HEADER_SIZE = struct.Struct("!I")
MAX_HEADER_SIZE = 1 * 1024 * 1024  # 1 MiB

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class RecordHeader:
    content_type: str
    metadata: str
    created_on: float

    def with_metadata(self, metadata: str) -> "RecordHeader":
        return replace(self, metadata=metadata)

    def to_primitive(self) -> dict[str, Any]:
        return {
            "content_type": self.content_type,
            "metadata": self.metadata,
            "created_on": self.created_on,
        }

    @classmethod
    def from_primitive(cls, payload: Any) -> "RecordHeader":
        try:
            return cls(
                content_type=str(payload["content_type"]),
                metadata=str(payload["metadata"]),
                created_on=float(payload["created_on"]),
            )
        except (TypeError, KeyError, ValueError) as e:
            raise CorruptedRecordError(f"NfsError::CorruptedRecord: {e!s}")

    def encode(self) -> bytes:
        header = cbor.dumps(self.to_primitive())
        if len(header) + HEADER_SIZE.size > MAX_HEADER_SIZE:
            raise ValueError(f"Record header is too large: {len(header)} bytes")
        return HEADER_SIZE.pack(len(header) + HEADER_SIZE.size) + header

    @classmethod
    async def read_from(cls, f: Any) -> tuple["RecordHeader", int]:
        """Read the header from the beginning of an opened record file.

        Returns the header and the offset of the content.
        """
        prefix = await f.read(HEADER_SIZE.size)
        if len(prefix) < HEADER_SIZE.size:
            raise CorruptedRecordError()
        (hsize,) = HEADER_SIZE.unpack(prefix)
        if hsize < HEADER_SIZE.size or hsize > MAX_HEADER_SIZE:
            raise CorruptedRecordError()
        payload = await f.read(hsize - HEADER_SIZE.size)
        if len(payload) < hsize - HEADER_SIZE.size:
            raise CorruptedRecordError()
        try:
            primitive = cbor.loads(payload)
        except Exception as e:
            raise CorruptedRecordError(f"NfsError::CorruptedRecord: {e!s}")
        return cls.from_primitive(primitive), hsize


@dataclass(frozen=True)
class FileRecord:
    path: PurePath
    size: int
    content_type: str
    metadata: str
    created_on: float
    last_modified: float

    @property
    def name(self) -> str:
        return self.path.name

    @classmethod
    def create(
        cls,
        path: PurePath,
        header: RecordHeader,
        *,
        file_size: int,
        header_size: int,
        last_modified: float,
    ) -> "FileRecord":
        return cls(
            path=path,
            size=file_size - header_size,
            content_type=header.content_type,
            metadata=header.metadata,
            created_on=header.created_on,
            last_modified=last_modified,
        )

    @property
    def header(self) -> RecordHeader:
        return RecordHeader(
            content_type=self.content_type,
            metadata=self.metadata,
            created_on=self.created_on,
        )
