import logging
from typing import Optional

from .content import ContentStore
from .errors import NfsDirectoryNotFoundError, NfsFileExistsError, NfsFileNotFoundError
from .fs.local import FileSystem
from .record import FileRecord
from .resolver import CanonicalLocation, NfsPathResolver


logger = logging.getLogger(__name__)


class MetadataStore:
    """Per-file records: name, size, content type, metadata and timestamps.

    Records share their files with the content store, so relocating a
    record relocates its content in the same filesystem operation.
    """

    def __init__(
        self, fs: FileSystem, resolver: NfsPathResolver, content: ContentStore
    ) -> None:
        self._fs = fs
        self._resolver = resolver
        self._content = content

    async def get(self, location: CanonicalLocation) -> FileRecord:
        return await self._content.get_record(location)

    async def exists(self, location: CanonicalLocation) -> bool:
        try:
            status = await self._fs.get_filestatus(
                self._resolver.to_real_path(location)
            )
        except (FileNotFoundError, NotADirectoryError):
            return False
        return not status.is_dir

    async def update(
        self, location: CanonicalLocation, *, metadata: Optional[str] = None
    ) -> FileRecord:
        record = await self.get(location)
        if metadata is not None and metadata != record.metadata:
            await self._content.rewrite(location, record.header.with_metadata(metadata))
        else:
            await self._fs.touch(self._resolver.to_real_path(location))
        return await self.get(location)

    async def relocate(self, src: CanonicalLocation, dst: CanonicalLocation) -> None:
        """Move a record to a new location in one rename.

        The caller is expected to hold the locks of both locations.
        """
        real_src = self._resolver.to_real_path(src)
        real_dst = self._resolver.to_real_path(dst)
        if not await self.exists(src):
            raise NfsFileNotFoundError()
        if await self._fs.exists(real_dst):
            raise NfsFileExistsError()
        try:
            await self._fs.rename(real_src, real_dst)
        except (FileNotFoundError, NotADirectoryError):
            raise NfsDirectoryNotFoundError()
        await self._fs.touch(real_dst)
        logger.info("Relocated %s to %s", src, dst)

    async def delete(self, location: CanonicalLocation) -> None:
        if not await self.exists(location):
            raise NfsFileNotFoundError()
        try:
            await self._fs.remove(self._resolver.to_real_path(location))
        except FileNotFoundError:
            raise NfsFileNotFoundError()
        logger.info("Deleted %s", location)
