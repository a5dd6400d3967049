"""Parameter mapping between the generation service and the dialect adapters."""
from __future__ import annotations

import re
from typing import Any, Dict, List, Mapping, Optional, Sequence

_NUMERIC_KEY_RE = re.compile(r"^\d+$")
_PLACEHOLDER_RE = re.compile(r"^<([A-Za-z0-9_]+)>$")
_KEY_DECORATION_RE = re.compile(r"[{}:$]")
_TYPED_PLACEHOLDER_RE = re.compile(r"^\{\s*([A-Za-z0-9_]+)\s*:[^}]*\}$")


def convert_named_to_positional(params: Optional[Mapping[str, Any]]) -> List[Any]:
    """Converts a named parameter mapping into a ``$N`` positional list.

    Numeric keys come first in ascending order. A value of the form ``<name>``
    resolves to ``params[name]`` when that key exists, and such a referenced key
    is not emitted again. Remaining named keys follow in lexical order.

    >>> convert_named_to_positional({"1": "a", "2": "b", "name": "c"})
    ['a', 'b', 'c']
    """
    if not params:
        return []

    numeric_keys = sorted((k for k in params if _NUMERIC_KEY_RE.match(k)), key=int)
    named_keys = sorted(k for k in params if not _NUMERIC_KEY_RE.match(k))

    positional: List[Any] = []
    consumed = set()
    for key in numeric_keys:
        value = params[key]
        if isinstance(value, str):
            match = _PLACEHOLDER_RE.match(value)
            if match and match.group(1) in params:
                consumed.add(match.group(1))
                value = params[match.group(1)]
        positional.append(value)

    for key in named_keys:
        if key in consumed:
            continue
        positional.append(params[key])
    return positional


def map_generated_params(descriptors: Optional[Sequence[Mapping[str, Any]]]) -> Dict[str, Any]:
    """Maps the generation service's parameter descriptors to a named mapping.

    The key is the first of ``name``, ``placeholder``, ``position`` or the
    1-based index. A typed placeholder such as ``{tenant_id:String}`` keeps its
    name only, otherwise ``{``, ``}``, ``:`` and ``$`` are removed. Descriptors with
    no value are skipped.
    """
    record: Dict[str, Any] = {}
    for index, param in enumerate(descriptors or []):
        if "value" not in param or param["value"] is None:
            continue
        name = param.get("name")
        placeholder = param.get("placeholder")
        position = param.get("position")
        if isinstance(name, str) and name.strip():
            candidate = name.strip()
        elif isinstance(placeholder, str) and placeholder.strip():
            candidate = placeholder.strip()
        elif isinstance(position, int) and not isinstance(position, bool):
            candidate = str(position)
        else:
            candidate = str(index + 1)
        typed = _TYPED_PLACEHOLDER_RE.match(candidate)
        if typed:
            candidate = typed.group(1)
        key = _KEY_DECORATION_RE.sub("", candidate).strip()
        record[key] = param["value"]
    return record
