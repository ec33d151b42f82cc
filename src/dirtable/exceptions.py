from __future__ import annotations

from pathlib import Path


class DirtableError(Exception):
    """Base exception for dirtable errors."""


class CodecError(DirtableError):
    """Raised by a codec when bytes cannot be decoded into a value."""


class TableError(DirtableError):
    """Base class for errors tied to a table operation.

    ``key`` and ``path`` identify the entry involved, when there is one.
    """

    def __init__(
        self,
        message: str,
        *,
        key: str | None = None,
        path: Path | None = None,
    ) -> None:
        super().__init__(message)
        self.key = key
        self.path = path


class InvalidKeyError(TableError):
    """Raised when the key policy rejects a key."""


class ForeignFileError(InvalidKeyError):
    """Raised during iteration when a file name is not a valid entry name."""


class NotFoundError(TableError):
    """Raised when an operation references an absent entry."""


class AlreadyExistsError(TableError):
    """Raised when a strict create targets an entry that already exists."""


class ReadOnlyError(TableError):
    """Raised when a write is attempted on a read-only table."""


class DecodeError(TableError):
    """Raised when the codec rejects the content of an entry's file."""

    def __init__(self, key: str, path: Path, cause: BaseException) -> None:
        super().__init__(f"Cannot decode entry '{key}' ({path}): {cause}", key=key, path=path)
        self.cause = cause


class EncodeError(TableError):
    """Raised when the codec cannot serialize the value given for an entry."""

    def __init__(self, key: str, path: Path, cause: BaseException) -> None:
        super().__init__(f"Cannot encode value for entry '{key}' ({path}): {cause}", key=key, path=path)
        self.cause = cause


class TableIOError(TableError):
    """Raised when the underlying filesystem call fails."""

    def __init__(
        self,
        message: str,
        *,
        key: str | None = None,
        path: Path | None = None,
        errno: int | None = None,
        strerror: str | None = None,
    ) -> None:
        super().__init__(message, key=key, path=path)
        self.errno = errno
        self.strerror = strerror

    @classmethod
    def from_os_error(
        cls,
        exc: OSError,
        *,
        key: str | None = None,
        path: Path | None = None,
    ) -> "TableIOError":
        target = path if path is not None else exc.filename
        reason = exc.strerror or str(exc)
        return cls(
            f"Filesystem error on {target}: {reason}",
            key=key,
            path=Path(target) if target is not None else None,
            errno=exc.errno,
            strerror=exc.strerror,
        )


class BuilderError(TableError):
    """Raised when a table cannot be constructed."""


class DirectoryCreateError(BuilderError, TableIOError):
    """Raised when the builder fails to create a missing table directory."""


class UnknownFormatError(BuilderError):
    """Raised when a requested file format is not supported."""
