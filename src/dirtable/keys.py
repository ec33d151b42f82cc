"""Key policies: which file names are entries, and what key each one has.

A policy is any object with ``key_to_name``, ``name_to_key`` and
``validate_key``; the table never subclasses or inspects it further.
"""

from __future__ import annotations

import re
import sys
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, runtime_checkable

SLUG_PATTERN = re.compile(r"[^a-z0-9]+")
SEPARATORS = frozenset("/\\")
WINDOWS_RESERVED = frozenset('<>:"|?*')


@runtime_checkable
class KeyPolicy(Protocol):
    def key_to_name(self, key: str) -> str:
        ...

    def name_to_key(self, name: str) -> Optional[str]:
        ...

    def validate_key(self, key: str) -> bool:
        ...


def slugify(value: Any) -> str:
    """Normalize a value into a filesystem-friendly slug."""
    text = str(value).strip().lower()
    text = SLUG_PATTERN.sub("-", text)
    text = text.strip("-")
    return text or "item"


def is_safe_name(name: str) -> bool:
    """Return True when ``name`` stays inside a directory on any common host."""
    if not name or name in (".", ".."):
        return False
    for char in name:
        if char in SEPARATORS or char in WINDOWS_RESERVED or ord(char) < 32:
            return False
    if sys.platform == "win32" and name.endswith((" ", ".")):
        return False
    return True


def _round_trips(policy: KeyPolicy, key: str) -> bool:
    name = policy.key_to_name(key)
    return is_safe_name(name) and policy.name_to_key(name) == key


@dataclass(frozen=True)
class ExtensionKeyPolicy:
    """Default policy: the key is the file name minus an optional extension.

    Parameters
    ----------
    extension:
        Suffix required of every entry file (``".json"``). ``None`` makes the
        whole file name the key.
    include_hidden:
        Treat dot-files as entries. Off by default so editor swap files and
        similar artefacts stay out of the table.
    """

    extension: Optional[str] = None
    include_hidden: bool = False

    def key_to_name(self, key: str) -> str:
        return key + (self.extension or "")

    def name_to_key(self, name: str) -> Optional[str]:
        if not is_safe_name(name):
            return None
        if name.startswith(".") and not self.include_hidden:
            return None
        if self.extension:
            if not name.endswith(self.extension):
                return None
            name = name[: -len(self.extension)]
        return name or None

    def validate_key(self, key: str) -> bool:
        return isinstance(key, str) and bool(key) and _round_trips(self, key)


@dataclass(frozen=True)
class SlugKeyPolicy:
    """Keys must be lowercase slugs such as ``my-first-post``."""

    extension: Optional[str] = None

    def key_to_name(self, key: str) -> str:
        return key + (self.extension or "")

    def name_to_key(self, name: str) -> Optional[str]:
        if self.extension:
            if not name.endswith(self.extension):
                return None
            name = name[: -len(self.extension)]
        if not name or slugify(name) != name:
            return None
        return name

    def validate_key(self, key: str) -> bool:
        return isinstance(key, str) and bool(key) and _round_trips(self, key)

    def key_for(self, value: Any) -> str:
        """Derive a valid key from arbitrary text (a title, a name...)."""
        return slugify(value)


class FunctionKeyPolicy:
    """Adapt a ``to_name``/``to_key`` function pair into a key policy.

    ``to_key`` returns ``None`` for names that are not entries. When
    ``validate`` is omitted a key is valid if its file name is safe and maps
    back to the same key. The pair may be lossy (several names, one key).
    """

    def __init__(
        self,
        to_name: Callable[[str], str],
        to_key: Callable[[str], Optional[str]],
        validate: Callable[[str], bool] | None = None,
    ) -> None:
        self._to_name = to_name
        self._to_key = to_key
        self._validate = validate

    def key_to_name(self, key: str) -> str:
        return self._to_name(key)

    def name_to_key(self, name: str) -> Optional[str]:
        if not is_safe_name(name):
            return None
        return self._to_key(name)

    def validate_key(self, key: str) -> bool:
        if not isinstance(key, str) or not key:
            return False
        if self._validate is not None:
            return self._validate(key) and is_safe_name(self.key_to_name(key))
        return _round_trips(self, key)

    def __repr__(self) -> str:
        return f"FunctionKeyPolicy(to_name={self._to_name!r}, to_key={self._to_key!r})"
