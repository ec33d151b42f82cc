from __future__ import annotations

import errno
import logging
import os
import shutil
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Generic, Iterable, Iterator, Literal, Optional, TypeVar, Union

from .codecs import BytesCodec, EntryCodec
from .exceptions import (
    AlreadyExistsError,
    CodecError,
    DecodeError,
    EncodeError,
    ForeignFileError,
    InvalidKeyError,
    NotFoundError,
    ReadOnlyError,
    TableError,
    TableIOError,
)
from .keys import ExtensionKeyPolicy, KeyPolicy

logger = logging.getLogger(__name__)

V = TypeVar("V")
ForeignMode = Literal["skip", "warn", "raise"]
FOREIGN_MODES: tuple[str, ...] = ("skip", "warn", "raise")
SOFT_DELETE_SUFFIX = ".deleted"
# errno values meaning "hard links are not available here"
LINK_UNSUPPORTED = frozenset(
    {errno.EPERM, errno.EXDEV, errno.EMLINK, errno.ENOTSUP, errno.EOPNOTSUPP, errno.ENOSYS}
)


@dataclass(frozen=True)
class Entry(Generic[V]):
    """One item produced by :meth:`DirectoryTable.iter`.

    Exactly one of ``value`` and ``error`` is meaningful; check ``ok`` or call
    ``unwrap()`` to get the value or raise the error.
    """

    key: str
    path: Path
    value: Optional[V] = None
    error: Optional[TableError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> V:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


class DirectoryTable(Generic[V]):
    """A directory seen as a table of ``key -> value`` entries.

    Parameters
    ----------
    root:
        Directory holding one file per entry. Not created or checked here;
        use :class:`~dirtable.builder.TableBuilder` for a validated table.
    codec:
        Converts file bytes to values and back. Defaults to raw bytes.
    key_policy:
        Maps keys to file names and decides which names are entries.
    read_only:
        Reject every mutating operation with :class:`ReadOnlyError`.
    on_foreign:
        What iteration does with files the key policy rejects: ``"skip"``
        them, ``"warn"`` through the module logger, or ``"raise"``
        :class:`ForeignFileError`.
    ignore_decode_errors:
        Leave undecodable entries out of :meth:`iter` instead of yielding
        them with a :class:`DecodeError`. :meth:`get` still raises.

    Nothing is cached: every call goes back to the filesystem, so files
    edited by hand between two calls are always seen. Files may change
    between the steps of a single call, in which case the call raises
    :class:`NotFoundError` or :class:`TableIOError` rather than returning
    stale data.
    """

    def __init__(
        self,
        root: Path | str,
        *,
        codec: EntryCodec[V] | None = None,
        key_policy: KeyPolicy | None = None,
        read_only: bool = False,
        on_foreign: ForeignMode = "skip",
        ignore_decode_errors: bool = False,
    ) -> None:
        if on_foreign not in FOREIGN_MODES:
            raise ValueError(f"on_foreign must be one of {FOREIGN_MODES}, got {on_foreign!r}")
        self.root = Path(root)
        self.codec: EntryCodec[V] = codec if codec is not None else BytesCodec()  # type: ignore[assignment]
        self.key_policy: KeyPolicy = key_policy if key_policy is not None else ExtensionKeyPolicy()
        self.read_only = read_only
        self.on_foreign = on_foreign
        self.ignore_decode_errors = ignore_decode_errors

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(root={str(self.root)!r}, "
            f"codec={type(self.codec).__name__}, read_only={self.read_only})"
        )

    # Lookup ------------------------------------------------------------
    def get(self, key: str) -> V:
        """Read and decode the entry stored under ``key``."""
        path = self.path_for(key)
        return self._decode(key, path, self._read(key, path))

    def contains(self, key: str) -> bool:
        """Whether a file currently backs ``key``.

        Never raises: an invalid key or a failed existence check both read
        as ``False``.
        """
        try:
            path = self.path_for(key)
        except InvalidKeyError:
            return False
        try:
            return path.is_file()
        except OSError:
            return False

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.contains(key)

    def path_for(self, key: str) -> Path:
        """Return the file path backing ``key``, validating the key first."""
        if not self.key_policy.validate_key(key):
            raise InvalidKeyError(f"Invalid key {key!r}", key=key if isinstance(key, str) else None)
        return self.root / self.key_policy.key_to_name(key)

    # Mutation ----------------------------------------------------------
    def put(self, key: str, value: V) -> Path:
        """Create or fully overwrite the entry under ``key``."""
        self._check_writable(key)
        path = self.path_for(key)
        self._write(key, path, self._encode(key, path, value), exclusive=False)
        return path

    def insert(self, key: str, value: V) -> Path:
        """Create the entry under ``key``; fail if a file already backs it."""
        self._check_writable(key)
        path = self.path_for(key)
        self._write(key, path, self._encode(key, path, value), exclusive=True)
        return path

    def delete(self, key: str) -> None:
        """Remove the entry's file. A missing entry raises :class:`NotFoundError`."""
        self._check_writable(key)
        path = self.path_for(key)
        self._unlink(key, path)

    def rename(self, old_key: str, new_key: str) -> Path:
        """Move an entry to a new key, refusing to overwrite an existing one."""
        self._check_writable(old_key)
        old_path = self.path_for(old_key)
        new_path = self.path_for(new_key)
        self._move(old_key, old_path, new_key, new_path)
        return new_path

    def soft_delete(self, key: str, alt_key: str | None = None) -> Path:
        """Take an entry out of the table while keeping its bytes on disk.

        The file moves to ``.<name>.deleted`` (``name`` derived from
        ``alt_key`` when given), a name the key policy must not accept. Rename
        it back by hand to restore the entry.
        """
        self._check_writable(key)
        path = self.path_for(key)
        tomb_name = "." + self.path_for(alt_key or key).name + SOFT_DELETE_SUFFIX
        if self.key_policy.name_to_key(tomb_name) is not None:
            raise InvalidKeyError(
                f"Key policy would treat soft-deleted file {tomb_name!r} as an entry",
                key=key,
                path=path,
            )
        tomb = self.root / tomb_name
        self._move(key, path, key, tomb)
        return tomb

    def put_many(self, items: Union[Mapping[str, V], Iterable[tuple[str, V]]]) -> list[Path]:
        """Put several entries in order, stopping at the first failure."""
        pairs = items.items() if isinstance(items, Mapping) else items
        return [self.put(key, value) for key, value in pairs]

    def delete_many(self, keys: Iterable[str]) -> None:
        """Delete several entries in order, stopping at the first failure."""
        for key in keys:
            self.delete(key)

    # Iteration ---------------------------------------------------------
    def keys(self) -> Iterator[str]:
        """Lazily list the keys currently present, without reading content."""
        for key, _ in self._scan():
            yield key

    def __iter__(self) -> Iterator[str]:
        return self.keys()

    def iter(self) -> Iterator[Entry[V]]:
        """Lazily read every entry currently present.

        Each :class:`Entry` carries its own result, so a malformed file shows
        up as an entry with a :class:`DecodeError` and iteration continues.
        """
        for key, path in self._scan():
            try:
                value = self._decode(key, path, self._read(key, path))
            except NotFoundError:
                # removed since the listing
                continue
            except DecodeError as exc:
                if self.ignore_decode_errors:
                    continue
                yield Entry(key=key, path=path, error=exc)
            except TableError as exc:
                yield Entry(key=key, path=path, error=exc)
            else:
                yield Entry(key=key, path=path, value=value)

    def count(self) -> int:
        return sum(1 for _ in self.keys())

    def is_empty(self) -> bool:
        return next(self.keys(), None) is None

    # Internal helpers --------------------------------------------------
    def _check_writable(self, key: str | None) -> None:
        if self.read_only:
            raise ReadOnlyError(f"Table {self.root} is read-only", key=key)

    def _scan(self) -> Iterator[tuple[str, Path]]:
        try:
            with os.scandir(self.root) as iterator:
                names = sorted(entry.name for entry in iterator if _is_file(entry))
        except OSError as exc:
            raise TableIOError.from_os_error(exc, path=self.root) from exc

        # Sorted order makes the winner deterministic when a lossy policy
        # maps several names to one key.
        seen: set[str] = set()
        for name in names:
            key = self.key_policy.name_to_key(name)
            if key is None:
                self._foreign(name)
                continue
            if key in seen:
                logger.debug("Skipping %s: key %r already provided by an earlier file", name, key)
                continue
            seen.add(key)
            yield key, self.root / name

    def _foreign(self, name: str) -> None:
        if self.on_foreign == "warn":
            logger.warning("Ignoring %s in %s: not a valid entry name", name, self.root)
        elif self.on_foreign == "raise":
            raise ForeignFileError(
                f"File {name!r} in {self.root} is not a valid entry name",
                path=self.root / name,
            )

    def _read(self, key: str, path: Path) -> bytes:
        try:
            return path.read_bytes()
        except OSError as exc:
            raise self._translate(exc, key, path, absent_is_not_found=True) from exc

    def _write(self, key: str, path: Path, data: bytes, *, exclusive: bool) -> None:
        try:
            with path.open("xb" if exclusive else "wb") as fh:
                fh.write(data)
        except OSError as exc:
            raise self._translate(exc, key, path, absent_is_not_found=False) from exc

    def _unlink(self, key: str, path: Path) -> None:
        try:
            path.unlink()
        except OSError as exc:
            raise self._translate(exc, key, path, absent_is_not_found=True) from exc

    def _move(self, key: str, source: Path, target_key: str, target: Path) -> None:
        # A hard link never replaces an existing target, and the file keeps
        # its inode, so mode and concurrent edits survive the move.
        try:
            os.link(source, target)
        except FileExistsError as exc:
            raise self._translate(exc, target_key, target, absent_is_not_found=False) from exc
        except OSError as exc:
            if exc.errno not in LINK_UNSUPPORTED:
                raise self._translate(exc, key, source, absent_is_not_found=True) from exc
            self._copy(key, source, target_key, target)
        self._unlink(key, source)

    def _copy(self, key: str, source: Path, target_key: str, target: Path) -> None:
        data = self._read(key, source)
        self._write(target_key, target, data, exclusive=True)
        try:
            shutil.copymode(source, target)
        except OSError as exc:
            raise self._translate(exc, target_key, target, absent_is_not_found=False) from exc

    def _encode(self, key: str, path: Path, value: V) -> bytes:
        try:
            return self.codec.encode(value)
        except (CodecError, ValueError) as exc:
            raise EncodeError(key, path, exc) from exc

    def _decode(self, key: str, path: Path, data: bytes) -> V:
        try:
            return self.codec.decode(data)
        except (CodecError, ValueError) as exc:
            raise DecodeError(key, path, exc) from exc

    def _translate(
        self,
        exc: OSError,
        key: str,
        path: Path,
        *,
        absent_is_not_found: bool,
    ) -> TableError:
        if isinstance(exc, FileExistsError):
            return AlreadyExistsError(f"Entry '{key}' already exists", key=key, path=path)
        if not _is_dir(self.root):
            return TableIOError(
                f"Table directory {self.root} is missing",
                key=key,
                path=path,
                errno=exc.errno,
                strerror=exc.strerror,
            )
        # A subdirectory that happens to carry an entry's name is not an entry.
        if absent_is_not_found and isinstance(exc, (FileNotFoundError, IsADirectoryError)):
            return NotFoundError(f"No entry '{key}' in {self.root}", key=key, path=path)
        return TableIOError.from_os_error(exc, key=key, path=path)


def _is_file(entry: os.DirEntry[Any]) -> bool:
    try:
        return entry.is_file()
    except OSError:
        return False


def _is_dir(path: Path) -> bool:
    try:
        return path.is_dir()
    except OSError:
        return False
