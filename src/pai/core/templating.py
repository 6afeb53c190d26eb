"""Template interpolation for pipeline step inputs and output mappings.

    "{{input.text}}"              -> native value (dict, list, number...)
    "Topic: {{steps.a.output}}"   -> string; non-strings rendered as JSON

Paths walk dot-separated segments through mappings (and, by index, through
lists). Anything missing resolves to None instead of raising, so a forward
reference to a step that has not run yet is simply absent.
"""

import json
import re
from typing import Any, Mapping


_EXPR_RE = re.compile(r"\{\{\s*([^{}]*?)\s*\}\}")


def resolve_path(context: Any, path: str) -> Any:
    """Walk a dot path through nested mappings and sequences.

    Example:
        >>> resolve_path({"steps": {"a": {"output": {"n": 1}}}}, "steps.a.output.n")
        1
        >>> resolve_path({"steps": {}}, "steps.missing.output") is None
        True
    """
    if not path:
        return None

    value = context
    for segment in path.split("."):
        if value is None:
            return None
        if isinstance(value, Mapping):
            value = value.get(segment)
        elif isinstance(value, (list, tuple)):
            try:
                value = value[int(segment)]
            except (ValueError, IndexError):
                return None
        else:
            return None
    return value


def _to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


def interpolate(template: Any, context: Mapping[str, Any]) -> Any:
    """Resolve ``{{path}}`` expressions recursively.

    Args:
        template: String, list, tuple, dict or scalar
        context: {"input": ..., "steps": {id: {"output": ...}}}

    Returns:
        The resolved value. A string that is exactly one expression keeps the
        referenced value's native type.
    """
    if isinstance(template, str):
        whole = _EXPR_RE.fullmatch(template)
        if whole:
            return resolve_path(context, whole.group(1))
        if "{{" not in template:
            return template
        return _EXPR_RE.sub(lambda m: _to_text(resolve_path(context, m.group(1))), template)

    if isinstance(template, dict):
        return {key: interpolate(value, context) for key, value in template.items()}

    if isinstance(template, list):
        return [interpolate(item, context) for item in template]

    if isinstance(template, tuple):
        return tuple(interpolate(item, context) for item in template)

    return template


def references(template: Any) -> list[str]:
    """List every path referenced by a template (used for diagnostics)."""
    if isinstance(template, str):
        return _EXPR_RE.findall(template)
    if isinstance(template, dict):
        return [ref for value in template.values() for ref in references(value)]
    if isinstance(template, (list, tuple)):
        return [ref for item in template for ref in references(item)]
    return []
