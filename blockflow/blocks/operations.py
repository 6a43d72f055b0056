"""
Fixed operation set for function blocks.

Function blocks never run caller-supplied code; they pick one of the
operations registered here by name and pass it keyword arguments taken
from the node configuration.
"""

from typing import Any, Callable, Dict, List, Optional
import json
import string


_operation_registry: Dict[str, Callable[..., Any]] = {}


def register_operation(name: str):
    """Decorator to register a function-block operation."""
    def decorator(func):
        _operation_registry[name] = func
        return func
    return decorator


def get_operation(name: str) -> Optional[Callable[..., Any]]:
    """Get an operation by name."""
    return _operation_registry.get(name)


def list_operations() -> List[str]:
    return sorted(_operation_registry)


class _PlainFieldFormatter(string.Formatter):
    """``str.format`` restricted to plain named fields."""

    def get_field(self, field_name, args, kwargs):
        if "." in field_name or "[" in field_name:
            raise ValueError(f"Only plain field names are allowed in templates: {{{field_name}}}")
        return super().get_field(field_name, args, kwargs)


_formatter = _PlainFieldFormatter()


@register_operation("template")
def template(text: str = "", **values: Any) -> Dict[str, Any]:
    """Format ``text`` with named fields from the remaining arguments."""
    return {"result": _formatter.vformat(str(text), (), values)}


@register_operation("merge")
def merge(objects: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    """Shallow-merge a list of objects; later objects win."""
    merged: Dict[str, Any] = {}
    for item in objects or []:
        if not isinstance(item, dict):
            raise ValueError(f"merge expects objects, got {type(item).__name__}")
        merged.update(item)
    return {"result": merged}


@register_operation("pick")
def pick(source: Optional[Dict[str, Any]] = None, keys: Optional[List[str]] = None) -> Dict[str, Any]:
    """Keep only ``keys`` of ``source``."""
    source = source or {}
    return {"result": {key: source[key] for key in keys or [] if key in source}}


@register_operation("json_parse")
def json_parse(text: str = "") -> Dict[str, Any]:
    return {"result": json.loads(text)}


@register_operation("json_dump")
def json_dump(value: Any = None, indent: Optional[int] = None) -> Dict[str, Any]:
    return {"result": json.dumps(value, indent=indent, default=str)}


@register_operation("uppercase")
def uppercase(text: str = "") -> Dict[str, Any]:
    return {"result": str(text).upper()}


@register_operation("lowercase")
def lowercase(text: str = "") -> Dict[str, Any]:
    return {"result": str(text).lower()}


@register_operation("length")
def length(value: Any = None) -> Dict[str, Any]:
    return {"result": len(value) if value is not None else 0}
