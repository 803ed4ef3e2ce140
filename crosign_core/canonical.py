"""
Canonical JSON encoding of signing payloads.

The bytes produced here are exactly what gets hashed and signed, and the
chain's verifier rebuilds them independently, so the rules are fixed:

- object keys sorted by UTF-8 byte order, recursively (array elements too)
- no whitespace between tokens; string contents untouched
- non-ASCII characters emitted raw as UTF-8
- ``<``, ``>``, ``&``, U+2028 and U+2029 escaped as ``\\uXXXX``, matching
  Go's ``encoding/json`` which the verifier uses
- floats and NaN rejected (no canonical textual form)

The encoder never relies on dict insertion order: every mapping is
re-sorted explicitly before emission.
"""

from __future__ import annotations

import dataclasses
import json
from collections.abc import Mapping
from enum import Enum
from typing import Any

from crosign_core.errors import CanonicalizationError

_GO_ESCAPES = (
    ("<", "\\u003c"),
    (">", "\\u003e"),
    ("&", "\\u0026"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
)


def to_value(obj: Any) -> Any:
    """
    Reduce *obj* to a tree of dict / list / str / int / bool / None.

    Objects exposing ``to_dict()`` (messages, fees, coins) contribute their
    own field set; dataclasses contribute their fields.
    """
    if obj is None or isinstance(obj, bool):
        return obj
    if isinstance(obj, Enum):
        return to_value(obj.value)
    if isinstance(obj, str):
        return str(obj)
    if isinstance(obj, int):
        return int(obj)
    if isinstance(obj, float):
        raise CanonicalizationError(
            f"float {obj!r} has no canonical form; encode amounts as strings"
        )
    if isinstance(obj, (bytes, bytearray)):
        raise CanonicalizationError("raw bytes must be encoded to a string first")
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_value(to_dict())
    if isinstance(obj, Mapping):
        out = {}
        for key, value in obj.items():
            if not isinstance(key, str):
                raise CanonicalizationError(f"object key {key!r} is not a string")
            out[key] = to_value(value)
        return out
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: to_value(getattr(obj, f.name)) for f in dataclasses.fields(obj)}
    if isinstance(obj, (list, tuple)):
        return [to_value(v) for v in obj]
    raise CanonicalizationError(f"cannot canonicalise {type(obj).__name__}")


def sort_value(value: Any) -> Any:
    """Recursively rebuild every mapping with keys in UTF-8 byte order."""
    if isinstance(value, dict):
        return {
            k: sort_value(value[k])
            for k in sorted(value, key=lambda k: k.encode("utf-8"))
        }
    if isinstance(value, list):
        return [sort_value(v) for v in value]
    return value


def encode_str(obj: Any) -> str:
    """Canonical JSON text for *obj*."""
    tree = to_value(obj)
    try:
        tree = sort_value(tree)
        text = json.dumps(
            tree,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        )
    except UnicodeEncodeError as exc:
        raise CanonicalizationError(f"key is not valid Unicode: {exc.reason}") from exc
    except (TypeError, ValueError) as exc:
        raise CanonicalizationError(str(exc)) from exc
    for raw, escaped in _GO_ESCAPES:
        text = text.replace(raw, escaped)
    return text


def encode(obj: Any) -> bytes:
    """Canonical JSON as UTF-8 bytes."""
    text = encode_str(obj)
    try:
        return text.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise CanonicalizationError(f"text is not valid Unicode: {exc.reason}") from exc


def sign_bytes(sign_doc: Any) -> bytes:
    """The exact bytes a signer hashes for *sign_doc*."""
    return encode(sign_doc)
