import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import datetime, timezone
from email.utils import formatdate
from importlib.metadata import version
from typing import Any

import aiohttp
import aiohttp_cors
import uvloop
from aiohttp import hdrs, web
from aiohttp.web_request import Request
from aiohttp.web_urldispatcher import AbstractRoute
from aiohttp_cors import CorsConfig
from neuro_logging import init_logging, setup_sentry

from .config import Config, CORSConfig
from .content import parse_range
from .directory import DirectoryListing
from .errors import (
    InvalidActionError,
    InvalidFieldTypeError,
    MissingParameterError,
    NfsError,
    UnauthorizedError,
)
from .fs.local import FileStatus, FileSystem, StorageType, copy_streams
from .record import FileRecord
from .resolver import CanonicalLocation, NfsPathResolver
from .security import PermissionChecker, StaticTokenValidator, setup_security
from .storage import FileAction, NfsStorage


logger = logging.getLogger(__name__)

API_V1_KEY = web.AppKey("api_v1", web.Application)
CONFIG_KEY = web.AppKey("config", Config)
STORAGE_KEY = web.AppKey("storage", NfsStorage)

METADATA_HEADER = "Metadata"
CREATED_ON_HEADER = "Created-On"

MOVE_REQUIRED_FIELDS = ("srcRootPath", "destRootPath", "srcPath", "destPath")


class ApiHandler:
    def register(self, app: web.Application) -> list[AbstractRoute]:
        return app.add_routes((web.get("/ping", self.handle_ping),))

    async def handle_ping(self, request: web.Request) -> web.Response:
        return web.Response()


class NfsHandler:
    def __init__(self, app: web.Application, config: Config) -> None:
        self._app = app
        self._config = config
        self._permission_checker = PermissionChecker()

    def register(self, app: web.Application, cors: CorsConfig) -> None:
        # more specific resources first, a PUT to /file/... lands on metadata
        metadata_resource = app.router.add_resource(r"/file/metadata/{tail:.*}")
        cors.add(metadata_resource.add_route("PUT", self.handle_modify_file_metadata))

        file_resource = app.router.add_resource(r"/file/{tail:.*}")
        cors.add(file_resource.add_route("POST", self.handle_create_file))
        cors.add(file_resource.add_route("HEAD", self.handle_get_file_metadata))
        cors.add(file_resource.add_route("GET", self.handle_get_file))
        cors.add(file_resource.add_route("DELETE", self.handle_delete_file))

        dir_resource = app.router.add_resource(r"/directory/{tail:.*}")
        cors.add(dir_resource.add_route("POST", self.handle_create_directory))
        cors.add(dir_resource.add_route("GET", self.handle_get_directory))
        cors.add(dir_resource.add_route("DELETE", self.handle_delete_directory))

        move_resource = app.router.add_resource("/movefile")
        cors.add(move_resource.add_route("POST", self.handle_move_or_copy_file))

    @property
    def _storage(self) -> NfsStorage:
        return self._app[STORAGE_KEY]

    async def _get_location_from_request(
        self, request: web.Request, *, allow_root: bool = False
    ) -> CanonicalLocation:
        identity = await self._permission_checker.authorize(request)
        root, _, path = request.match_info.get("tail", "").partition("/")
        location = self._storage.resolver.resolve(
            root, path, identity, allow_root=allow_root
        )
        await self._permission_checker.check_root_access(request, location.root)
        return location

    async def handle_create_file(self, request: web.Request) -> web.StreamResponse:
        location = await self._get_location_from_request(request)
        await self._storage.create_file(
            location,
            request.content,
            content_type=request.headers.get(hdrs.CONTENT_TYPE),
            metadata=request.headers.get(METADATA_HEADER),
        )
        raise web.HTTPOk

    def _create_response(self, record: FileRecord) -> web.StreamResponse:
        response = web.StreamResponse()
        response.content_length = record.size
        response.last_modified = record.last_modified  # type: ignore
        response.headers[hdrs.ACCEPT_RANGES] = "bytes"
        response.headers[CREATED_ON_HEADER] = formatdate(
            record.created_on, usegmt=True
        )
        response.headers[METADATA_HEADER] = record.metadata
        response.headers[hdrs.CONTENT_TYPE] = record.content_type
        return response

    async def handle_get_file(self, request: web.Request) -> web.StreamResponse:
        location = await self._get_location_from_request(request)
        spec = parse_range(request.headers.get(hdrs.RANGE))
        async with self._storage.open_file(location, spec) as (record, rng, f):
            response = self._create_response(record)
            response.headers[hdrs.CONTENT_RANGE] = rng.content_range
            response.content_length = rng.length
            if rng.partial:
                response.set_status(web.HTTPPartialContent.status_code)
            await response.prepare(request)
            await copy_streams(f, response, size=rng.length)
        await response.write_eof()
        return response

    async def handle_get_file_metadata(
        self, request: web.Request
    ) -> web.StreamResponse:
        location = await self._get_location_from_request(request)
        record = await self._storage.get_file(location)
        return self._create_response(record)

    async def handle_delete_file(self, request: web.Request) -> web.StreamResponse:
        location = await self._get_location_from_request(request)
        await self._storage.delete_file(location)
        raise web.HTTPOk

    async def handle_modify_file_metadata(
        self, request: web.Request
    ) -> web.StreamResponse:
        location = await self._get_location_from_request(request)
        payload = await self._read_json_object(request)
        await self._storage.update_file_metadata(
            location, name=payload.get("name"), metadata=payload.get("metadata")
        )
        raise web.HTTPOk

    async def handle_move_or_copy_file(
        self, request: web.Request
    ) -> web.StreamResponse:
        identity = await self._permission_checker.authorize(request)
        payload = await self._read_json_object(request)
        if any(payload.get(name) in (None, "") for name in MOVE_REQUIRED_FIELDS):
            raise MissingParameterError()
        for name in MOVE_REQUIRED_FIELDS:
            if not isinstance(payload[name], str):
                raise InvalidFieldTypeError(name)

        resolver = self._storage.resolver
        src_root = resolver.parse_root(payload["srcRootPath"], "srcRootPath")
        dst_root = resolver.parse_root(payload["destRootPath"], "destRootPath")
        action = self._parse_action(payload.get("action"))
        src = resolver.resolve(
            src_root, payload["srcPath"], identity, path_field="srcPath"
        )
        dst_dir = resolver.resolve(
            dst_root,
            payload["destPath"],
            identity,
            path_field="destPath",
            allow_root=True,
        )
        await self._permission_checker.check_root_access(request, src_root)
        await self._permission_checker.check_root_access(request, dst_root)

        await self._storage.move_or_copy(src, dst_dir, action)
        raise web.HTTPOk

    def _parse_action(self, value: Any) -> FileAction:
        if value is None:
            return FileAction.MOVE
        if isinstance(value, str) and value.upper() in FileAction.values():
            return FileAction(value.upper())
        raise InvalidActionError(value)

    async def handle_create_directory(
        self, request: web.Request
    ) -> web.StreamResponse:
        location = await self._get_location_from_request(request)
        await self._storage.create_directory(location)
        raise web.HTTPOk

    async def handle_get_directory(self, request: web.Request) -> web.StreamResponse:
        location = await self._get_location_from_request(request, allow_root=True)
        listing = await self._storage.get_directory(location)
        return web.json_response(self._convert_listing_to_primitive(listing))

    async def handle_delete_directory(
        self, request: web.Request
    ) -> web.StreamResponse:
        location = await self._get_location_from_request(request)
        await self._storage.delete_directory(location)
        raise web.HTTPOk

    async def _read_json_object(self, request: web.Request) -> dict[str, Any]:
        if not request.body_exists:
            return {}
        try:
            payload = await request.json()
        except ValueError:
            raise InvalidFieldTypeError("body", "should be a JSON object")
        if not isinstance(payload, dict):
            raise InvalidFieldTypeError("body", "should be a JSON object")
        return payload

    @classmethod
    def _convert_record_to_primitive(cls, record: FileRecord) -> dict[str, Any]:
        return {
            "name": record.name,
            "size": record.size,
            "contentType": record.content_type,
            "metadata": record.metadata,
            "createdOn": _format_timestamp(record.created_on),
            "modifiedOn": _format_timestamp(record.last_modified),
        }

    @classmethod
    def _convert_dir_status_to_primitive(cls, status: FileStatus) -> dict[str, Any]:
        return {
            "name": status.path.name,
            "modifiedOn": _format_timestamp(status.modification_time),
        }

    @classmethod
    def _convert_listing_to_primitive(
        cls, listing: DirectoryListing
    ) -> dict[str, Any]:
        return {
            "info": {
                "name": listing.location.name,
                "modifiedOn": _format_timestamp(listing.status.modification_time),
            },
            "files": [cls._convert_record_to_primitive(r) for r in listing.files],
            "subDirectories": [
                cls._convert_dir_status_to_primitive(s) for s in listing.directories
            ],
        }


def _format_timestamp(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, timezone.utc).isoformat()


_HTTP_ERROR_CLASSES: dict[int, type[web.HTTPError]] = {
    400: web.HTTPBadRequest,
    401: web.HTTPUnauthorized,
    404: web.HTTPNotFound,
    416: web.HTTPRequestRangeNotSatisfiable,
    500: web.HTTPInternalServerError,
}


def _http_exception(
    error_class: type[web.HTTPError],
    description: str,
    error_code: int,
    **kwargs: Any,
) -> web.HTTPError:
    data = json.dumps({"errorCode": error_code, "description": description})
    return error_class(text=data, content_type="application/json", **kwargs)


def _nfs_http_exception(request: web.Request, error: NfsError) -> web.HTTPError:
    headers = dict(error.headers)
    if isinstance(error, UnauthorizedError):
        realm = request.config_dict[CONFIG_KEY].server.name
        headers[hdrs.WWW_AUTHENTICATE] = f'Bearer realm="{realm}"'
    error_class = _HTTP_ERROR_CLASSES.get(error.status, web.HTTPBadRequest)
    return _http_exception(
        error_class, error.description, error.error_code, headers=headers
    )


def _unknown_error_message(exc: Exception, request: web.Request) -> str:
    return (
        f"Unexpected exception {exc.__class__.__name__}: {str(exc)}. "
        f"Path with query: {request.path_qs}."
    )


@web.middleware
async def handle_exceptions(
    request: web.Request,
    handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
) -> web.StreamResponse:
    try:
        return await handler(request)
    except NfsError as e:
        raise _nfs_http_exception(request, e)
    except web.HTTPException:
        raise
    except Exception as e:
        msg_str = _unknown_error_message(e, request)
        logger.exception(msg_str)
        raise _http_exception(web.HTTPInternalServerError, msg_str, 500)


def _setup_cors(app: aiohttp.web.Application, config: CORSConfig) -> CorsConfig:
    if not config.allowed_origins:
        return aiohttp_cors.setup(app)

    logger.info(f"Setting up CORS with allowed origins: {config.allowed_origins}")
    default_options = aiohttp_cors.ResourceOptions(
        allow_credentials=True,
        expose_headers="*",
        allow_headers="*",
    )
    cors = aiohttp_cors.setup(
        app, defaults={origin: default_options for origin in config.allowed_origins}
    )
    return cors


package_version = version("platform-nfs-api")


async def add_version_to_header(request: Request, response: web.StreamResponse) -> None:
    response.headers["X-Service-Version"] = f"platform-nfs-api/{package_version}"


async def create_app(config: Config) -> web.Application:
    app = web.Application(
        middlewares=[handle_exceptions],
        handler_args=dict(keepalive_timeout=config.server.keep_alive_timeout_s),
    )
    app[CONFIG_KEY] = config

    setup_security(app, StaticTokenValidator(config.auth.tokens))
    cors = _setup_cors(app, config.cors)

    fs = FileSystem.create(
        StorageType.LOCAL,
        executor_max_workers=config.storage.fs_local_thread_pool_size,
    )
    storage = NfsStorage(fs, NfsPathResolver(config.storage.fs_local_base_path))

    async def _init_app(app: web.Application) -> AsyncIterator[None]:
        logger.info("Initializing local file system for NFS API")
        async with fs:
            await storage.init()
            logger.info(
                "NFS storage initialized. Base path=%s",
                config.storage.fs_local_base_path,
            )
            yield

    app.cleanup_ctx.append(_init_app)

    api_v1_app = web.Application()
    api_v1_handler = ApiHandler()
    api_v1_handler.register(api_v1_app)
    api_v1_app[STORAGE_KEY] = storage
    app[API_V1_KEY] = api_v1_app

    nfs_app = web.Application()
    nfs_handler = NfsHandler(api_v1_app, config)
    nfs_handler.register(nfs_app, cors)

    api_v1_app.add_subapp("/nfs", nfs_app)
    app.add_subapp("/api/v1", api_v1_app)

    app.on_response_prepare.append(add_version_to_header)

    logger.info("NFS API has been initialized, ready to serve.")

    return app


def main() -> None:
    init_logging()
    config = Config.from_environ()
    logging.info("Loaded config: %r", config)

    setup_sentry(
        health_check_url_path="/api/v1/ping",
        ignore_errors=[web.HTTPBadRequest, web.HTTPNotFound, web.HTTPUnauthorized],
    )

    uvloop.install()
    web.run_app(create_app(config), host=config.server.host, port=config.server.port)
