from pathlib import PurePath

import pytest

from platform_nfs_api.config import (
    Config,
    ServerConfig,
    StorageConfig,
    TokenGrant,
    parse_tokens,
)


TOKENS = '{"token1": {"identity": "alice", "permissions": ["SAFE_DRIVE_ACCESS"]}}'


class TestServerConfig:
    def test_from_environ(self) -> None:
        environ = {"NP_NFS_API_PORT": "1234", "NP_NFS_API_HOST": "127.0.0.1"}
        config = ServerConfig.from_environ(environ)
        assert config.port == 1234
        assert config.host == "127.0.0.1"

    def test_default_port(self) -> None:
        environ: dict[str, str] = {}
        config = ServerConfig.from_environ(environ)
        assert config.port == 8080
        assert config.keep_alive_timeout_s == 75


class TestStorageConfig:
    def test_from_environ(self) -> None:
        environ = {"NP_NFS_LOCAL_BASE_PATH": "/path/to/dir"}
        config = StorageConfig.from_environ(environ)
        assert config.fs_local_base_path == PurePath("/path/to/dir")
        assert config.fs_local_thread_pool_size == 100

    def test_from_environ_failed(self) -> None:
        environ: dict[str, str] = {}
        with pytest.raises(KeyError, match="NP_NFS_LOCAL_BASE_PATH"):
            StorageConfig.from_environ(environ)


class TestParseTokens:
    def test_parse(self) -> None:
        tokens = parse_tokens(TOKENS)
        assert tokens == {
            "token1": TokenGrant(
                identity="alice", permissions=frozenset({"SAFE_DRIVE_ACCESS"})
            )
        }

    def test_no_permissions(self) -> None:
        tokens = parse_tokens('{"token2": {"identity": "bob"}}')
        assert tokens["token2"].permissions == frozenset()

    def test_not_an_object(self) -> None:
        with pytest.raises(ValueError, match="JSON object"):
            parse_tokens('["token1"]')

    def test_missing_identity(self) -> None:
        with pytest.raises(ValueError, match="Invalid grant"):
            parse_tokens('{"token1": {"permissions": []}}')

    def test_malformed_json(self) -> None:
        with pytest.raises(ValueError):
            parse_tokens("{")


class TestConfig:
    def test_from_environ_defaults(self) -> None:
        environ = {
            "NP_NFS_LOCAL_BASE_PATH": "/path/to/dir",
            "NP_NFS_AUTH_TOKENS": TOKENS,
        }
        config = Config.from_environ(environ)
        assert config.server.port == 8080
        assert config.server.keep_alive_timeout_s == 75
        assert config.storage.fs_local_base_path == PurePath("/path/to/dir")
        assert config.storage.fs_local_thread_pool_size == 100
        assert config.auth.tokens["token1"].identity == "alice"
        assert config.cors.allowed_origins == []

    def test_from_environ_custom(self) -> None:
        environ = {
            "NP_NFS_API_PORT": "1234",
            "NP_NFS_API_KEEP_ALIVE_TIMEOUT": "900",
            "NP_NFS_LOCAL_BASE_PATH": "/path/to/dir",
            "NP_NFS_LOCAL_THREAD_POOL_SIZE": "123",
            "NP_NFS_AUTH_TOKENS": TOKENS,
            "NP_CORS_ORIGINS": "https://domain1.com,http://do.main",
        }
        config = Config.from_environ(environ)
        assert config.server.port == 1234
        assert config.server.keep_alive_timeout_s == 900
        assert config.storage.fs_local_thread_pool_size == 123
        assert config.cors.allowed_origins == ["https://domain1.com", "http://do.main"]

    def test_tokens_hidden_from_repr(self) -> None:
        environ = {
            "NP_NFS_LOCAL_BASE_PATH": "/path/to/dir",
            "NP_NFS_AUTH_TOKENS": TOKENS,
        }
        config = Config.from_environ(environ)
        assert "token1" not in repr(config)

    def test_missing_tokens(self) -> None:
        environ = {"NP_NFS_LOCAL_BASE_PATH": "/path/to/dir"}
        with pytest.raises(KeyError, match="NP_NFS_AUTH_TOKENS"):
            Config.from_environ(environ)

    def test_dot_identity(self) -> None:
        with pytest.raises(ValueError, match="Invalid grant"):
            parse_tokens('{"token1": {"identity": ".."}}')
