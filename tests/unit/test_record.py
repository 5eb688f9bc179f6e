import struct
from io import BytesIO
from pathlib import PurePath
from typing import Any

import cbor
import pytest

from platform_nfs_api.errors import CorruptedRecordError
from platform_nfs_api.record import MAX_HEADER_SIZE, FileRecord, RecordHeader


class AsyncBytesIO(BytesIO):
    async def read(self, *args: Any, **kwargs: Any) -> Any:  # type: ignore
        return super().read(*args, **kwargs)


HEADER = RecordHeader(
    content_type="text/plain", metadata="some metadata", created_on=1234.5
)


class TestRecordHeader:
    def test_encode(self) -> None:
        payload = HEADER.encode()
        (size,) = struct.unpack("!I", payload[:4])
        assert size == len(payload)
        assert cbor.loads(payload[4:]) == {
            "content_type": "text/plain",
            "metadata": "some metadata",
            "created_on": 1234.5,
        }

    def test_encode_too_large(self) -> None:
        header = HEADER.with_metadata("a" * MAX_HEADER_SIZE)
        with pytest.raises(ValueError, match="too large"):
            header.encode()

    async def test_read_from(self) -> None:
        encoded = HEADER.encode()
        f = AsyncBytesIO(encoded + b"content")
        header, offset = await RecordHeader.read_from(f)
        assert header == HEADER
        assert offset == len(encoded)
        assert await f.read() == b"content"

    def test_with_metadata(self) -> None:
        header = HEADER.with_metadata("other")
        assert header.metadata == "other"
        assert header.created_on == HEADER.created_on

    @pytest.mark.parametrize(
        "payload",
        [
            b"",
            b"\x00\x00",
            struct.pack("!I", 2),
            struct.pack("!I", 100) + b"short",
            struct.pack("!I", 2 * 1024 * 1024),
        ],
    )
    async def test_read_truncated(self, payload: bytes) -> None:
        with pytest.raises(CorruptedRecordError):
            await RecordHeader.read_from(AsyncBytesIO(payload))

    async def test_read_missing_fields(self) -> None:
        header = cbor.dumps({"content_type": "text/plain"})
        payload = struct.pack("!I", len(header) + 4) + header
        with pytest.raises(CorruptedRecordError):
            await RecordHeader.read_from(AsyncBytesIO(payload))


class TestFileRecord:
    def test_create(self) -> None:
        record = FileRecord.create(
            PurePath("dir/file.txt"),
            HEADER,
            file_size=117,
            header_size=100,
            last_modified=2000.0,
        )
        assert record.name == "file.txt"
        assert record.size == 17
        assert record.content_type == "text/plain"
        assert record.metadata == "some metadata"
        assert record.created_on == 1234.5
        assert record.last_modified == 2000.0
        assert record.header == HEADER
