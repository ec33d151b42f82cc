"""
Directories of plain files presented as key/value tables.

The public API centers around :class:`DirectoryTable`, which treats every
regular file in a directory as one entry: the file name is the key and the
decoded file content is the value. Tables are assembled and validated by
:class:`TableBuilder`. Nothing is cached, so files edited by hand are picked
up on the next call.
"""

from .builder import TableBuilder
from .codecs import (
    BytesCodec,
    EntryCodec,
    JsonCodec,
    MarkdownFrontmatterCodec,
    ModelCodec,
    TextCodec,
    YamlCodec,
)
from .config import TableConfig
from .exceptions import (
    AlreadyExistsError,
    BuilderError,
    CodecError,
    DecodeError,
    DirectoryCreateError,
    DirtableError,
    EncodeError,
    ForeignFileError,
    InvalidKeyError,
    NotFoundError,
    ReadOnlyError,
    TableError,
    TableIOError,
    UnknownFormatError,
)
from .keys import ExtensionKeyPolicy, FunctionKeyPolicy, KeyPolicy, SlugKeyPolicy
from .table import DirectoryTable, Entry

__all__ = (
    "DirectoryTable",
    "Entry",
    "TableBuilder",
    "TableConfig",
    "EntryCodec",
    "BytesCodec",
    "TextCodec",
    "JsonCodec",
    "YamlCodec",
    "MarkdownFrontmatterCodec",
    "ModelCodec",
    "KeyPolicy",
    "ExtensionKeyPolicy",
    "SlugKeyPolicy",
    "FunctionKeyPolicy",
    "DirtableError",
    "TableError",
    "CodecError",
    "InvalidKeyError",
    "ForeignFileError",
    "NotFoundError",
    "AlreadyExistsError",
    "ReadOnlyError",
    "DecodeError",
    "EncodeError",
    "TableIOError",
    "BuilderError",
    "DirectoryCreateError",
    "UnknownFormatError",
)
