import enum
import uuid
from dataclasses import dataclass
from pathlib import PurePath
from typing import Optional, Union
from urllib.parse import quote

from .errors import InvalidPathError, InvalidRootPathError, MissingParameterError


class RootPath(str, enum.Enum):
    """Top level namespaces a request can address.

    APP is private to the calling identity, DRIVE is shared between all
    identities that were granted drive access.
    """

    APP = "app"
    DRIVE = "drive"

    @classmethod
    def values(cls) -> list[str]:
        return [item.value for item in cls]


@dataclass(frozen=True)
class CanonicalLocation:
    root: RootPath
    namespace: PurePath
    path: PurePath

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def is_root(self) -> bool:
        return not self.path.parts

    @property
    def parent(self) -> "CanonicalLocation":
        return CanonicalLocation(self.root, self.namespace, self.path.parent)

    def joinpath(self, name: str) -> "CanonicalLocation":
        return CanonicalLocation(self.root, self.namespace, self.path / name)

    @property
    def key(self) -> str:
        return str(self.namespace / self.path)

    def __str__(self) -> str:
        return f"{self.root.value}:/{self.path}"


class NfsPathResolver:
    ROOTS_DIR = "roots"
    TMP_DIR = "tmp"

    def __init__(self, base_path: Union[PurePath, str]) -> None:
        self._base_path = PurePath(base_path)

    @property
    def roots_path(self) -> PurePath:
        return self._base_path / self.ROOTS_DIR

    @property
    def tmp_path(self) -> PurePath:
        return self._base_path / self.TMP_DIR

    def parse_root(self, value: Optional[str], field: str = "rootPath") -> RootPath:
        if not value or value not in RootPath.values():
            raise InvalidRootPathError(value, field)
        return RootPath(value)

    def sanitize_path(self, path: str, field: str = "path") -> PurePath:
        parts = [part for part in path.split("/") if part]
        if any(part in (".", "..") or "\x00" in part for part in parts):
            raise InvalidPathError(path, field)
        return PurePath(*parts)

    def resolve(
        self,
        root: Union[RootPath, Optional[str]],
        path: Optional[str],
        identity: str,
        *,
        root_field: str = "rootPath",
        path_field: str = "path",
        allow_root: bool = False,
    ) -> CanonicalLocation:
        if not isinstance(root, RootPath):
            root = self.parse_root(root, root_field)
        if path is None:
            raise MissingParameterError()
        rel_path = self.sanitize_path(path, path_field)
        if not rel_path.parts and not allow_root:
            raise MissingParameterError()
        return CanonicalLocation(
            root=root, namespace=self._namespace(root, identity), path=rel_path
        )

    def _namespace(self, root: RootPath, identity: str) -> PurePath:
        if root == RootPath.APP:
            return PurePath(root.value, quote(identity, safe=""))
        return PurePath(root.value)

    def to_real_path(self, location: CanonicalLocation) -> PurePath:
        return self.roots_path / location.namespace / location.path

    def make_tmp_path(self) -> PurePath:
        return self.tmp_path / uuid.uuid4().hex
