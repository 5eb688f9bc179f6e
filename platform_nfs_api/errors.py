from collections.abc import Mapping
from typing import Optional


class NfsError(Exception):
    """Base class for errors that are reported to API clients.

    Every subclass carries the HTTP status, the domain error code and the
    human readable description that end up in the error payload.
    """

    status: int = 400
    error_code: int = 400
    description: str = "Bad request"

    def __init__(self, description: Optional[str] = None) -> None:
        if description is not None:
            self.description = description
        super().__init__(self.description)

    @property
    def headers(self) -> Mapping[str, str]:
        return {}


class UnauthorizedError(NfsError):
    # the 400 error code inside a 401 response is part of the public contract
    status = 401
    error_code = 400
    description = "Unauthorised"


class MissingParameterError(NfsError):
    description = "Required parameters missing"


class InvalidRootPathError(NfsError):
    def __init__(self, value: Optional[str], field: str = "rootPath") -> None:
        super().__init__(f"Invalid {field} parameter: {value!r}")


class InvalidPathError(NfsError):
    def __init__(self, value: str, field: str = "path") -> None:
        super().__init__(f"Invalid {field} parameter: {value!r}")


class InvalidRangeError(NfsError):
    def __init__(self, value: str) -> None:
        super().__init__(f"Invalid range header: {value!r}, expected bytes=start-end")


class InvalidFieldTypeError(NfsError):
    def __init__(self, field: str, reason: str = "should be a string") -> None:
        super().__init__(f"Invalid {field} field: {reason}")


class InvalidActionError(NfsError):
    def __init__(self, value: object) -> None:
        super().__init__(f"Invalid action parameter: {value!r}, expected MOVE or COPY")


class AlreadyExistsError(NfsError):
    pass


class NfsFileExistsError(AlreadyExistsError):
    error_code = -505
    description = "NfsError::FileAlreadyExistsWithSameName"


class NfsDirectoryExistsError(AlreadyExistsError):
    error_code = -502
    description = "NfsError::DirectoryAlreadyExistsWithSameName"


class NotFoundError(NfsError):
    status = 404
    error_code = 404
    description = "NfsError::PathNotFound"


class NfsFileNotFoundError(NotFoundError):
    description = "NfsError::FileNotFound"


class NfsDirectoryNotFoundError(NotFoundError):
    description = "NfsError::DirectoryNotFound"


class RangeNotSatisfiableError(NfsError):
    status = 416
    error_code = 416

    def __init__(self, value: str, size: int) -> None:
        self.size = size
        super().__init__(f"Requested range not satisfiable: {value!r}")

    @property
    def headers(self) -> Mapping[str, str]:
        return {"Content-Range": f"bytes */{self.size}"}


class CorruptedRecordError(NfsError):
    status = 500
    error_code = 500
    description = "NfsError::CorruptedRecord"
