import logging
from dataclasses import dataclass, field

from .errors import (
    CorruptedRecordError,
    NfsDirectoryExistsError,
    NfsDirectoryNotFoundError,
    NfsFileNotFoundError,
)
from .fs.local import FileStatus, FileSystem
from .metadata import MetadataStore
from .record import FileRecord
from .resolver import CanonicalLocation, NfsPathResolver


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DirectoryListing:
    location: CanonicalLocation
    status: FileStatus
    files: list[FileRecord] = field(default_factory=list)
    directories: list[FileStatus] = field(default_factory=list)


class DirectoryIndex:
    def __init__(
        self, fs: FileSystem, resolver: NfsPathResolver, metadata: MetadataStore
    ) -> None:
        self._fs = fs
        self._resolver = resolver
        self._metadata = metadata

    async def _ensure_namespace(self, location: CanonicalLocation) -> None:
        # namespaces come into existence on first use
        await self._fs.mkdir(self._resolver.roots_path / location.namespace)

    async def exists(self, location: CanonicalLocation) -> bool:
        if location.is_root:
            await self._ensure_namespace(location)
            return True
        try:
            status = await self._fs.get_filestatus(
                self._resolver.to_real_path(location)
            )
        except (FileNotFoundError, NotADirectoryError):
            return False
        return status.is_dir

    async def ensure_parent(self, location: CanonicalLocation) -> None:
        try:
            await self._fs.mkdir(self._resolver.to_real_path(location.parent))
        except (FileExistsError, NotADirectoryError):
            raise NfsDirectoryNotFoundError()

    async def mkdir(self, location: CanonicalLocation) -> None:
        await self._ensure_namespace(location)
        try:
            await self._fs.mkdir(self._resolver.to_real_path(location), exist_ok=False)
        except FileExistsError:
            raise NfsDirectoryExistsError()
        except NotADirectoryError:
            raise NfsDirectoryNotFoundError()
        logger.info("Created directory %s", location)

    async def rmdir(self, location: CanonicalLocation) -> None:
        if location.is_root or not await self.exists(location):
            raise NfsDirectoryNotFoundError()
        try:
            await self._fs.remove(self._resolver.to_real_path(location), recursive=True)
        except FileNotFoundError:
            raise NfsDirectoryNotFoundError()
        logger.info("Deleted directory %s", location)

    async def list_children(self, location: CanonicalLocation) -> list[FileStatus]:
        if not await self.exists(location):
            raise NfsDirectoryNotFoundError()
        try:
            statuses = await self._fs.liststatus(self._resolver.to_real_path(location))
        except (FileNotFoundError, NotADirectoryError):
            raise NfsDirectoryNotFoundError()
        return sorted(statuses, key=lambda s: s.path)

    async def get(self, location: CanonicalLocation) -> DirectoryListing:
        children = await self.list_children(location)
        status = await self._fs.get_filestatus(self._resolver.to_real_path(location))
        listing = DirectoryListing(location=location, status=status)
        for child in children:
            if child.is_dir:
                listing.directories.append(child)
                continue
            try:
                record = await self._metadata.get(location.joinpath(child.path.name))
            except NfsFileNotFoundError:
                # removed concurrently
                continue
            except CorruptedRecordError:
                logger.warning("Skipping corrupted record %s", child.path)
                continue
            listing.files.append(record)
        return listing
