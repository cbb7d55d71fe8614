"""
Configuration merging for aigate.

Layers are merged key by key. Lists are replaced wholesale unless the
overriding key carries a ``+`` (append) or ``-`` (remove) prefix.
"""

from typing import Any


def _merge_list(base: list[Any], items: list[Any], op: str) -> list[Any]:
    if op == "+":
        return base + [item for item in items if item not in base]
    return [item for item in base if item not in items]


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Merge ``override`` on top of ``base`` without mutating either.

    - Nested dicts merge recursively
    - Scalars and plain lists replace
    - ``+key: [...]`` appends unique items to the list at ``key``
    - ``-key: [...]`` removes items from the list at ``key``
    - ``key: null`` drops ``key``

    Examples:
        >>> deep_merge({"retry": {"max_attempts": 3}}, {"retry": {"jitter": 0.0}})
        {'retry': {'max_attempts': 3, 'jitter': 0.0}}

        >>> deep_merge({"tags": ["a"]}, {"+tags": ["b"]})
        {'tags': ['a', 'b']}
    """
    merged = dict(base)

    for key, value in override.items():
        op = key[0] if key[:1] in ("+", "-") else ""
        if op and isinstance(value, list):
            target = key[1:]
            current = merged.get(target)
            if isinstance(current, list):
                merged[target] = _merge_list(current, value, op)
            elif op == "+":
                merged[target] = list(value)
            continue

        if value is None:
            merged.pop(key, None)
        elif isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value

    return merged


def merge_configs(*configs: dict[str, Any]) -> dict[str, Any]:
    """Merge configuration layers in order; later layers win."""
    result: dict[str, Any] = {}
    for config in configs:
        if config:
            result = deep_merge(result, config)
    return result


def get_nested_value(config: dict[str, Any], key_path: str) -> Any:
    """
    Read a dot-separated path such as ``retry.max_attempts``.

    Integer segments index into lists (``providers.0.name``).

    Returns:
        The value, or None when any segment is missing.
    """
    current: Any = config
    for key in key_path.split("."):
        if isinstance(current, dict) and key in current:
            current = current[key]
        elif isinstance(current, list) and key.isdigit() and int(key) < len(current):
            current = current[int(key)]
        else:
            return None
    return current


def set_nested_value(config: dict[str, Any], key_path: str, value: Any) -> dict[str, Any]:
    """
    Write ``value`` at a dot-separated path, creating dicts along the way.

    Returns:
        The same (mutated) dictionary.
    """
    *parents, leaf = key_path.split(".")
    current = config
    for key in parents:
        if not isinstance(current.get(key), dict):
            current[key] = {}
        current = current[key]
    current[leaf] = value
    return config
