import json
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Any, Optional


@dataclass(frozen=True)
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8080
    name: str = "NFS API"
    keep_alive_timeout_s: float = 75

    @classmethod
    def from_environ(cls, environ: Optional[dict[str, str]] = None) -> "ServerConfig":
        return EnvironConfigFactory(environ).create_server()


@dataclass(frozen=True)
class TokenGrant:
    identity: str
    permissions: frozenset[str] = frozenset()


@dataclass(frozen=True)
class AuthConfig:
    tokens: Mapping[str, TokenGrant] = field(repr=False, default_factory=dict)

    @classmethod
    def from_environ(cls, environ: Optional[dict[str, str]] = None) -> "AuthConfig":
        return EnvironConfigFactory(environ).create_auth()


@dataclass(frozen=True)
class StorageConfig:
    fs_local_base_path: PurePath
    fs_local_thread_pool_size: int = 100

    @classmethod
    def from_environ(cls, environ: Optional[dict[str, str]] = None) -> "StorageConfig":
        return EnvironConfigFactory(environ).create_storage()


@dataclass(frozen=True)
class CORSConfig:
    allowed_origins: Sequence[str] = ()


@dataclass(frozen=True)
class Config:
    server: ServerConfig
    storage: StorageConfig
    auth: AuthConfig
    cors: CORSConfig = CORSConfig()

    @classmethod
    def from_environ(cls, environ: Optional[dict[str, str]] = None) -> "Config":
        return EnvironConfigFactory(environ).create()


class EnvironConfigFactory:
    def __init__(self, environ: Optional[dict[str, str]] = None) -> None:
        self._environ = os.environ if environ is None else environ

    def create_server(self) -> ServerConfig:
        port = int(self._environ.get("NP_NFS_API_PORT", ServerConfig.port))
        keep_alive_timeout_s = float(
            self._environ.get(
                "NP_NFS_API_KEEP_ALIVE_TIMEOUT", ServerConfig.keep_alive_timeout_s
            )
        )
        return ServerConfig(
            host=self._environ.get("NP_NFS_API_HOST", ServerConfig.host),
            port=port,
            keep_alive_timeout_s=keep_alive_timeout_s,
        )

    def create_storage(self) -> StorageConfig:
        fs_local_base_path = self._environ["NP_NFS_LOCAL_BASE_PATH"]
        fs_local_thread_pool_size = int(
            self._environ.get(
                "NP_NFS_LOCAL_THREAD_POOL_SIZE",
                StorageConfig.fs_local_thread_pool_size,
            )
        )
        return StorageConfig(
            fs_local_base_path=PurePath(fs_local_base_path),
            fs_local_thread_pool_size=fs_local_thread_pool_size,
        )

    def create_auth(self) -> AuthConfig:
        return AuthConfig(tokens=parse_tokens(self._environ["NP_NFS_AUTH_TOKENS"]))

    def create_cors(self) -> CORSConfig:
        origins_str = self._environ.get("NP_CORS_ORIGINS", "")
        origins = [origin for origin in origins_str.split(",") if origin]
        return CORSConfig(allowed_origins=origins)

    def create(self) -> Config:
        return Config(
            server=self.create_server(),
            storage=self.create_storage(),
            auth=self.create_auth(),
            cors=self.create_cors(),
        )


def parse_tokens(value: str) -> dict[str, TokenGrant]:
    """Parse a JSON object mapping bearer tokens to their grants.

    {"<token>": {"identity": "<name>", "permissions": ["SAFE_DRIVE_ACCESS"]}}
    """
    payload: Any = json.loads(value)
    if not isinstance(payload, dict):
        raise ValueError("NP_NFS_AUTH_TOKENS should be a JSON object")
    tokens = {}
    for token, grant in payload.items():
        identity = grant.get("identity") if isinstance(grant, dict) else None
        if (
            not token
            or not isinstance(identity, str)
            or identity in ("", ".", "..")
        ):
            raise ValueError(f"Invalid grant for token entry: {grant!r}")
        permissions = grant.get("permissions", [])
        tokens[token] = TokenGrant(
            identity=identity, permissions=frozenset(str(p) for p in permissions)
        )
    return tokens
