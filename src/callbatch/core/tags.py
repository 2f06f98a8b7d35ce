"""
Tag normalisation.

Tags are caller-chosen correlation keys. They may be primitives, ordered
sequences or mappings of primitives; all of them are reduced to a canonical
string so that structurally equal tags address the same slot.
"""

import json
import time
import uuid
from typing import Any, Dict, List, Mapping, Tuple, Union

Primitive = Union[str, int, float, bool, None]
Tag = Union[Primitive, List[Primitive], Tuple[Primitive, ...], Dict[Any, Primitive]]


def generate_tag() -> str:
    """Generate a unique tag for calls added without one."""
    return f"tag:{int(time.time() * 1000)}:{uuid.uuid4()}"


def _canonical(value: Any) -> Any:
    """Convert a tag into a JSON-ready value with a fixed shape."""
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, int):
        # Encoded as text so integers of any width round-trip exactly
        return {"int": str(value)}
    if isinstance(value, (str, float)):
        return value
    if isinstance(value, bytes):
        return {"bytes": value.hex()}
    if isinstance(value, Mapping):
        return {"map": [[str(k), _canonical(v)] for k, v in sorted(value.items(), key=lambda kv: str(kv[0]))]}
    if isinstance(value, (list, tuple)):
        return [_canonical(item) for item in value]
    raise TypeError(f"Unsupported tag type: {type(value).__name__}")


def normalize_tag(tag: Tag) -> str:
    """
    Reduce a tag to its canonical storage key.

    Plain strings are used as-is. Everything else is rendered as compact JSON
    with mapping keys sorted, so ``{"a": "x", "b": 1}`` and
    ``{"b": 1, "a": "x"}`` share a key, while ``1`` and ``"1"`` do not.

    A string that spells out the canonical JSON of another tag shares that
    tag's key: ``'{"int":"1"}'`` and ``1`` address the same slot.

    Args:
        tag: Caller supplied tag

    Returns:
        Canonical string key
    """
    if isinstance(tag, str):
        return tag
    return json.dumps(_canonical(tag), separators=(",", ":"), ensure_ascii=False)
