from collections.abc import AsyncIterator
from pathlib import Path
from typing import NamedTuple

import aiohttp
import aiohttp.web
import pytest
import pytest_asyncio
from aiohttp.test_utils import unused_port

from platform_nfs_api.api import create_app
from platform_nfs_api.config import (
    AuthConfig,
    Config,
    CORSConfig,
    ServerConfig,
    StorageConfig,
    TokenGrant,
)


APP_TOKEN = "app-token"
OTHER_APP_TOKEN = "other-app-token"
DRIVE_TOKEN = "drive-token"


class ApiConfig(NamedTuple):
    host: str
    port: int

    @property
    def endpoint(self) -> str:
        return f"http://{self.host}:{self.port}/api/v1"

    @property
    def ping_url(self) -> str:
        return f"{self.endpoint}/ping"

    @property
    def nfs_url(self) -> str:
        return f"{self.endpoint}/nfs"

    def file_url(self, root: str, path: str) -> str:
        return f"{self.nfs_url}/file/{root}/{path}"

    def file_metadata_url(self, root: str, path: str) -> str:
        return f"{self.nfs_url}/file/metadata/{root}/{path}"

    def directory_url(self, root: str, path: str) -> str:
        return f"{self.nfs_url}/directory/{root}/{path}"

    @property
    def move_url(self) -> str:
        return f"{self.nfs_url}/movefile"


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def server_config() -> ServerConfig:
    return ServerConfig(host="127.0.0.1", port=unused_port())


@pytest.fixture
def config(server_config: ServerConfig, local_tmp_dir_path: Path) -> Config:
    return Config(
        server=server_config,
        storage=StorageConfig(fs_local_base_path=local_tmp_dir_path),
        auth=AuthConfig(
            tokens={
                APP_TOKEN: TokenGrant(identity="alice"),
                OTHER_APP_TOKEN: TokenGrant(identity="bob"),
                DRIVE_TOKEN: TokenGrant(
                    identity="carol", permissions=frozenset({"SAFE_DRIVE_ACCESS"})
                ),
            }
        ),
        cors=CORSConfig(allowed_origins=["http://localhost:8000"]),
    )


@pytest_asyncio.fixture
async def api(config: Config) -> AsyncIterator[ApiConfig]:
    app = await create_app(config)
    runner = aiohttp.web.AppRunner(app)
    await runner.setup()
    api_config = ApiConfig(host=config.server.host, port=config.server.port)
    site = aiohttp.web.TCPSite(runner, api_config.host, api_config.port)
    await site.start()
    yield api_config
    await runner.cleanup()


@pytest_asyncio.fixture
async def client() -> AsyncIterator[aiohttp.ClientSession]:
    async with aiohttp.ClientSession() as session:
        yield session


@pytest.fixture
def app_headers() -> dict[str, str]:
    return auth_headers(APP_TOKEN)


@pytest.fixture
def other_app_headers() -> dict[str, str]:
    return auth_headers(OTHER_APP_TOKEN)


@pytest.fixture
def drive_headers() -> dict[str, str]:
    return auth_headers(DRIVE_TOKEN)
