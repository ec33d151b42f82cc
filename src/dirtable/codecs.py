from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, Generic, Optional, TypeVar

import orjson
import yaml
from pydantic import BaseModel, ValidationError

from .exceptions import CodecError, UnknownFormatError

V = TypeVar("V")
M = TypeVar("M", bound=BaseModel)


class EntryCodec(ABC, Generic[V]):
    """Abstract interface for translating between file bytes and values.

    ``encode`` accepts every value of the codec's type and raises
    :class:`CodecError` for anything else. ``decode`` raises
    :class:`CodecError` when the bytes are malformed.
    """

    extension: str | None = None
    dump_mode: str = "json"

    @abstractmethod
    def encode(self, value: V) -> bytes:
        """Serialize a value into the bytes written to disk."""

    @abstractmethod
    def decode(self, data: bytes) -> V:
        """Parse bytes read from disk back into a value."""


class BytesCodec(EntryCodec[bytes]):
    """Opaque codec: file content is handed over untouched."""

    def encode(self, value: bytes) -> bytes:
        if not isinstance(value, (bytes, bytearray, memoryview)):
            raise CodecError(f"Expected bytes-like content, got {type(value).__name__}")
        return memoryview(value).tobytes()

    def decode(self, data: bytes) -> bytes:
        return data


class TextCodec(EntryCodec[str]):
    extension = ".txt"

    def __init__(self, encoding: str = "utf-8") -> None:
        self.encoding = encoding

    def encode(self, value: str) -> bytes:
        if not isinstance(value, str):
            raise CodecError(f"Expected text, got {type(value).__name__}")
        try:
            return value.encode(self.encoding)
        except UnicodeEncodeError as exc:
            raise CodecError(f"Text cannot be encoded as {self.encoding}: {exc}") from exc

    def decode(self, data: bytes) -> str:
        try:
            return data.decode(self.encoding)
        except UnicodeDecodeError as exc:
            raise CodecError(f"Content is not valid {self.encoding}: {exc}") from exc


class JsonCodec(EntryCodec[Any]):
    extension = ".json"

    def encode(self, value: Any) -> bytes:
        try:
            return orjson.dumps(value, option=orjson.OPT_INDENT_2 | orjson.OPT_NON_STR_KEYS) + b"\n"
        except orjson.JSONEncodeError as exc:
            raise CodecError(f"Cannot encode as JSON: {exc}") from exc

    def decode(self, data: bytes) -> Any:
        try:
            return orjson.loads(data)
        except orjson.JSONDecodeError as exc:
            raise CodecError(f"Invalid JSON: {exc}") from exc


class YamlCodec(EntryCodec[dict[str, Any]]):
    extension = ".yaml"
    dump_mode = "python"

    def encode(self, value: Mapping[str, Any]) -> bytes:
        return _dump_yaml(value).encode("utf-8")

    def decode(self, data: bytes) -> dict[str, Any]:
        try:
            payload = yaml.safe_load(data) or {}
        except yaml.YAMLError as exc:
            raise CodecError(f"Invalid YAML: {exc}") from exc
        if not isinstance(payload, dict):
            raise CodecError("YAML content did not produce a mapping")
        return payload


class MarkdownFrontmatterCodec(EntryCodec[dict[str, Any]]):
    """Markdown file with a YAML front matter block.

    The front matter becomes the mapping; the text after it is stored under
    ``body_field``. A mapping without ``body_field`` is written as front
    matter only and reads back without it. ``decode(encode(value))`` returns
    ``value`` unchanged, body whitespace included.
    """

    extension = ".md"
    dump_mode = "python"

    def __init__(self, body_field: str | None = None) -> None:
        self.body_field = body_field or "content"

    def encode(self, value: Mapping[str, Any]) -> bytes:
        payload = dict(value)
        has_body = self.body_field in payload
        body = payload.pop(self.body_field, None)
        if has_body and not isinstance(body, str):
            raise CodecError(f"Field '{self.body_field}' must be text, got {type(body).__name__}")
        rendered = f"---\n{_dump_yaml(payload)}---\n"
        if has_body:
            rendered += f"\n{body}"
        return rendered.encode("utf-8")

    def decode(self, data: bytes) -> dict[str, Any]:
        try:
            text = data.decode("utf-8")
            meta, body = _split_frontmatter(text)
        except (UnicodeDecodeError, yaml.YAMLError, ValueError) as exc:
            raise CodecError(f"Invalid markdown entry: {exc}") from exc
        payload = dict(meta)
        if body is not None:
            payload[self.body_field] = body
        return payload


class ModelCodec(EntryCodec[M]):
    """Validate payloads of an inner codec into a pydantic model."""

    def __init__(self, model: type[M], inner: EntryCodec[Any] | None = None) -> None:
        self.model = model
        self.inner = inner if inner is not None else JsonCodec()
        self.extension = self.inner.extension

    def encode(self, value: M) -> bytes:
        if not isinstance(value, self.model):
            raise CodecError(f"Expected {self.model.__name__}, got {type(value).__name__}")
        try:
            payload = value.model_dump(mode=self.inner.dump_mode)
        except ValueError as exc:
            raise CodecError(f"Cannot dump {self.model.__name__}: {exc}") from exc
        return self.inner.encode(payload)

    def decode(self, data: bytes) -> M:
        payload = self.inner.decode(data)
        try:
            return self.model.model_validate(payload)
        except ValidationError as exc:
            raise CodecError(str(exc)) from exc


def _dump_yaml(value: Mapping[str, Any]) -> str:
    try:
        return yaml.safe_dump(dict(value), allow_unicode=True, sort_keys=False)
    except yaml.YAMLError as exc:
        raise CodecError(f"Cannot encode as YAML: {exc}") from exc


def _split_frontmatter(text: str) -> tuple[dict[str, Any], Optional[str]]:
    """Split ``text`` into front matter and body.

    The body is ``None`` when nothing follows the closing ``---`` line.
    """
    if not text.startswith("---\n"):
        return {}, text

    rest = "\n" + text[4:]
    marker = rest.find("\n---\n")
    if marker == -1:
        if not rest.endswith("\n---"):
            return {}, text
        frontmatter_raw, tail = rest[:-4], ""
    else:
        frontmatter_raw, tail = rest[:marker], rest[marker + 5 :]
    meta = yaml.safe_load(frontmatter_raw) or {}
    if not isinstance(meta, dict):
        raise ValueError("Frontmatter must parse to a mapping")
    if not tail:
        return meta, None
    # A single blank line separates the front matter from the body
    if tail.startswith("\n"):
        tail = tail[1:]
    return meta, tail


FORMAT_REGISTRY: Mapping[str, type[EntryCodec[Any]]] = {
    "bytes": BytesCodec,
    "raw": BytesCodec,
    "text": TextCodec,
    "txt": TextCodec,
    "json": JsonCodec,
    "yaml": YamlCodec,
    "yml": YamlCodec,
    "markdown": MarkdownFrontmatterCodec,
    "md": MarkdownFrontmatterCodec,
}


def resolve_codec(name: str, *, body_field: str | None = None) -> EntryCodec[Any]:
    """Instantiate the codec registered under ``name`` (``"json"``, ``".md"``...)."""
    try:
        codec_cls = FORMAT_REGISTRY[name.lower().lstrip(".")]
    except KeyError as exc:
        raise UnknownFormatError(f"Unsupported format '{name}'") from exc
    if codec_cls is MarkdownFrontmatterCodec:
        return MarkdownFrontmatterCodec(body_field=body_field)
    return codec_cls()
