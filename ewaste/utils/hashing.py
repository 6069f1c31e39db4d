from __future__ import annotations

import json
from typing import Any

_FNV_OFFSET_BASIS = 0x811C9DC5
_FNV_PRIME = 0x01000193


def content_hash(text: str) -> str:
    """32-bit FNV-1a over the UTF-8 bytes of ``text``, as 8 hex digits.

    Used for change detection and audit trails only, never for security.
    """
    value = _FNV_OFFSET_BASIS
    for byte in text.encode("utf-8"):
        value ^= byte
        value = (value * _FNV_PRIME) & 0xFFFFFFFF
    return f"{value:08x}"


def hash_json(payload: Any) -> str:
    canonical = json.dumps(
        payload, sort_keys=True, ensure_ascii=False, separators=(",", ":")
    )
    return content_hash(canonical)
