"""
Deterministic canonical encoding for ledger exports and snapshot commitments.

Two exports of the same ledger must hash to the same bytes regardless of dict
insertion order, so every commitment goes through `canonical_json_bytes()`.
Amounts are integers end to end; a float reaching this layer is a bug upstream.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any


CANONICAL_ENCODING_VERSION = 1

_DOMAIN_PREFIX = b"yieldrunner:"


def _check_encodable(value: Any, path: str = "$") -> None:
    if isinstance(value, float):
        raise TypeError(f"{path}: floats are not allowed in canonical encoding")
    if isinstance(value, str):
        if any(0xD800 <= ord(ch) <= 0xDFFF for ch in value):
            raise TypeError(f"{path}: surrogate code points are not allowed")
        return
    if isinstance(value, dict):
        for k, v in value.items():
            if not isinstance(k, str):
                raise TypeError(f"{path}: dict keys must be str, got {type(k).__name__}")
            _check_encodable(k, path)
            _check_encodable(v, f"{path}.{k}")
        return
    if isinstance(value, (list, tuple)):
        for i, item in enumerate(value):
            _check_encodable(item, f"{path}[{i}]")


def canonical_json_bytes(value: Any) -> bytes:
    """
    Canonical JSON: UTF-8, sorted keys, no whitespace, no NaN, no floats.
    """
    _check_encodable(value)
    text = json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )
    return text.encode("utf-8")


def sha256_hex(data: bytes) -> str:
    return "0x" + hashlib.sha256(data).hexdigest()


def domain_sep_bytes(label: str, version: int = CANONICAL_ENCODING_VERSION) -> bytes:
    """ASCII, NUL-terminated prefix so commitments of different kinds never collide."""
    if not isinstance(label, str) or not label:
        raise TypeError("label must be a non-empty str")
    if "\x00" in label or not label.isascii():
        raise ValueError("label must be ASCII without NUL")
    if not isinstance(version, int) or isinstance(version, bool) or version <= 0:
        raise ValueError("version must be a positive int")
    return _DOMAIN_PREFIX + label.encode("ascii") + b":v" + str(version).encode("ascii") + b"\x00"


def commitment_hex(label: str, value: Any, *, version: int = CANONICAL_ENCODING_VERSION) -> str:
    """sha256(domain_sep(label) || canonical_json(value)) as 0x-prefixed hex."""
    return sha256_hex(domain_sep_bytes(label, version) + canonical_json_bytes(value))
