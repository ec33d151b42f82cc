from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel

from .codecs import BytesCodec, EntryCodec, ModelCodec, resolve_codec
from .config import TableConfig, load_config
from .exceptions import BuilderError, DirectoryCreateError
from .keys import ExtensionKeyPolicy, KeyPolicy
from .table import FOREIGN_MODES, DirectoryTable, ForeignMode

logger = logging.getLogger(__name__)

V = TypeVar("V")


class TableBuilder(Generic[V]):
    """Collect table settings, then validate them once in :meth:`build`.

    Every setter returns the builder so calls chain::

        notes = (
            TableBuilder("~/notes")
            .format("markdown")
            .create_if_missing()
            .build()
        )

    When no key policy is given, an :class:`ExtensionKeyPolicy` is derived
    from the codec's preferred extension (or :meth:`extension`).
    """

    def __init__(self, path: Path | str) -> None:
        self._path = path
        self._codec: Optional[EntryCodec[Any]] = None
        self._format: Optional[str] = None
        self._body_field: Optional[str] = None
        self._model: Optional[type[BaseModel]] = None
        self._key_policy: Optional[KeyPolicy] = None
        self._extension: Optional[str] = None
        self._include_hidden = False
        self._create_if_missing = False
        self._read_only = False
        self._on_foreign: ForeignMode = "skip"
        self._ignore_decode_errors = False

    @classmethod
    def from_config(
        cls,
        config: TableConfig,
        *,
        model: Optional[type[BaseModel]] = None,
    ) -> "TableBuilder[Any]":
        builder: TableBuilder[Any] = cls(config.path)
        if config.format is not None:
            builder.format(config.format, body_field=config.body_field)
        if model is not None:
            builder.model(model)
        if config.extension is not None:
            builder.extension(config.extension)
        return (
            builder.include_hidden(config.include_hidden)
            .create_if_missing(config.create_if_missing)
            .read_only(config.read_only)
            .on_foreign(config.on_foreign)
            .ignore_decode_errors(config.ignore_decode_errors)
        )

    @classmethod
    def from_file(
        cls,
        path: Path | str,
        *,
        model: Optional[type[BaseModel]] = None,
    ) -> "TableBuilder[Any]":
        return cls.from_config(load_config(path), model=model)

    # Settings ----------------------------------------------------------
    def codec(self, codec: EntryCodec[Any]) -> "TableBuilder[V]":
        self._codec = codec
        self._format = None
        return self

    def format(self, name: str, *, body_field: Optional[str] = None) -> "TableBuilder[V]":
        """Select a registered codec by name; resolved during :meth:`build`."""
        self._format = name
        self._body_field = body_field
        self._codec = None
        return self

    def model(self, model: type[BaseModel]) -> "TableBuilder[V]":
        """Validate every entry into ``model`` on top of the chosen codec."""
        self._model = model
        return self

    def key_policy(self, policy: KeyPolicy) -> "TableBuilder[V]":
        self._key_policy = policy
        return self

    def extension(self, extension: Optional[str]) -> "TableBuilder[V]":
        if extension and not extension.startswith("."):
            extension = f".{extension}"
        self._extension = extension
        return self

    def include_hidden(self, enabled: bool = True) -> "TableBuilder[V]":
        self._include_hidden = enabled
        return self

    def create_if_missing(self, enabled: bool = True) -> "TableBuilder[V]":
        self._create_if_missing = enabled
        return self

    def read_only(self, enabled: bool = True) -> "TableBuilder[V]":
        self._read_only = enabled
        return self

    def on_foreign(self, mode: ForeignMode) -> "TableBuilder[V]":
        self._on_foreign = mode
        return self

    def ignore_decode_errors(self, enabled: bool = True) -> "TableBuilder[V]":
        self._ignore_decode_errors = enabled
        return self

    # Build -------------------------------------------------------------
    def build(self) -> DirectoryTable[V]:
        """Validate the configuration and return a ready table.

        Raises :class:`BuilderError` (or its subclasses) and never returns a
        partially configured table.
        """
        root = self._resolve_root()
        codec = self._resolve_codec()
        policy = self._resolve_key_policy(codec)
        if self._on_foreign not in FOREIGN_MODES:
            raise BuilderError(
                f"on_foreign must be one of {FOREIGN_MODES}, got {self._on_foreign!r}",
                path=root,
            )
        self._prepare_directory(root)
        table: DirectoryTable[V] = DirectoryTable(
            root,
            codec=codec,
            key_policy=policy,
            read_only=self._read_only,
            on_foreign=self._on_foreign,
            ignore_decode_errors=self._ignore_decode_errors,
        )
        logger.debug("Built %r", table)
        return table

    def _resolve_root(self) -> Path:
        try:
            return Path(self._path).expanduser().absolute()
        except (TypeError, RuntimeError) as exc:
            raise BuilderError(f"Cannot resolve table path {self._path!r}: {exc}") from exc

    def _resolve_codec(self) -> EntryCodec[Any]:
        if self._codec is not None:
            codec = self._codec
        elif self._format is not None:
            codec = resolve_codec(self._format, body_field=self._body_field)
        elif self._model is not None:
            codec = resolve_codec("json")
        else:
            codec = BytesCodec()
        if self._model is not None:
            if isinstance(codec, BytesCodec):
                raise BuilderError("A model needs a structured format, not raw bytes")
            codec = ModelCodec(self._model, codec)
        return codec

    def _resolve_key_policy(self, codec: EntryCodec[Any]) -> KeyPolicy:
        if self._key_policy is not None:
            if self._extension is not None or self._include_hidden:
                raise BuilderError("extension/include_hidden cannot be combined with a custom key policy")
            return self._key_policy
        extension = self._extension if self._extension is not None else codec.extension
        return ExtensionKeyPolicy(extension=extension, include_hidden=self._include_hidden)

    def _prepare_directory(self, root: Path) -> None:
        try:
            exists = root.exists()
            is_dir = root.is_dir()
        except OSError as exc:
            raise BuilderError(f"Cannot inspect table path {root}: {exc}", path=root) from exc
        if exists and not is_dir:
            raise BuilderError(f"Table path {root} exists and is not a directory", path=root)
        if exists:
            return
        if not self._create_if_missing:
            raise BuilderError(f"Table directory {root} does not exist", path=root)
        try:
            root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DirectoryCreateError.from_os_error(exc, path=root) from exc
        logger.debug("Created table directory %s", root)
