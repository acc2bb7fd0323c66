from __future__ import annotations

import json
from typing import Any, Optional
import collections.abc

import yaml

from tokex.tokex_datatypes import Value
from tokex.tokex_match import BasicSequenceMatchResult, MatchedGroupInfo


# --------------------------
# Helpers
# --------------------------

def _norm_text(data: bytes | bytearray | str, *, encoding: Optional[str] = None) -> str:
    if isinstance(data, (bytes, bytearray)):
        return data.decode(encoding or 'utf-8', errors='replace')
    if isinstance(data, str):
        return data
    return str(data)


def _to_builtin(obj: Any) -> Any:
    """Flattens values, composites and match results into plain Python data."""
    from tokex.tokex_composite import CompositeValue
    from tokex.tokex_dispatch import TypeDescriptor
    if isinstance(obj, CompositeValue):
        return {k: _to_builtin(v) for k, v in obj.get().items()}
    if isinstance(obj, Value):
        return _to_builtin(obj.get())
    if isinstance(obj, MatchedGroupInfo):
        return {
            'text': obj.text,
            'nodes': _to_builtin(obj.nodes),
            'match_results': _to_builtin(obj.match_results),
            'value': _to_builtin(obj.value),
        }
    if isinstance(obj, BasicSequenceMatchResult):
        groups = []
        for i in range(len(obj.groups)):
            info = obj.group_info(i)
            groups.append(_to_builtin(info) if info is not None else None)
        return {'score': obj.score, 'order': obj.order, 'groups': groups}
    if isinstance(obj, TypeDescriptor):
        return obj.name
    if isinstance(obj, (list, tuple)):
        return [_to_builtin(x) for x in obj]
    if isinstance(obj, collections.abc.Mapping):
        return {str(k): _to_builtin(v) for k, v in obj.items()}
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    return str(obj)


def detect_format(data_hint: Optional[str] = None) -> Optional[str]:
    """Returns 'json' or 'yaml' from simple data sniffing."""
    if data_hint is None:
        return None
    s = data_hint.lstrip()
    if s.startswith('{') or s.startswith('['):
        return 'json'
    return 'yaml'


# --------------------------
# Public API
# --------------------------

def deserialize(data: bytes | bytearray | str, *, fmt: Optional[str] = None) -> Any:
    """
    Convert textual data to native Python structures.
    Supported fmt: 'json', 'yaml'. If fmt is None, sniffs the data.
    """
    text = _norm_text(data)
    f = (fmt or detect_format(text) or '').lower()
    if f == 'json':
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            # YAML is a superset of JSON; accept JSON-like content with YAML-isms
            return yaml.safe_load(text)
    if f == 'yaml':
        return yaml.safe_load(text)
    raise ValueError(f"Unsupported serialization format: {fmt!r}")


def serialize(value: Any, *, fmt: str = 'json', pretty: bool = True) -> str:
    """
    Convert a value, composite or match result into a textual representation.
    - fmt: 'json' | 'yaml'
    """
    f = (fmt or '').lower()
    built = _to_builtin(value)
    if f == 'json':
        return json.dumps(built, ensure_ascii=False, indent=2 if pretty else None)
    if f == 'yaml':
        return yaml.safe_dump(built, sort_keys=False)
    raise ValueError(f"Unsupported serialization format: {fmt!r}")


__all__ = [
    "deserialize",
    "serialize",
    "detect_format",
]
