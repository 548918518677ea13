"""Execution-context keys.

A coarse key looks like ``workflowType:x|domain:y|complexity:z``; finer keys
append further ``|name:value`` segments. Lookups fall back from the most
specific key toward the coarsest one by dropping segments right to left.
"""

from __future__ import annotations

from typing import List, Mapping, Optional

SEPARATOR = "|"
COARSE_FIELDS = ("workflowType", "domain", "complexity")
_ALIASES = {"workflow_type": "workflowType"}
UNKNOWN = "unknown"


def _clean(value: object) -> str:
    text = str(value).strip().replace(SEPARATOR, "/")
    return text or UNKNOWN


def hash_context(context: Mapping[str, object], extra: Optional[Mapping[str, object]] = None) -> str:
    """Build a context key from a mapping.

    Example:
        >>> hash_context({"workflow_type": "etl", "domain": "billing", "complexity": "low"})
        'workflowType:etl|domain:billing|complexity:low'
        >>> hash_context({"domain": "billing"}, extra={"tenant": "acme"})
        'workflowType:unknown|domain:billing|complexity:unknown|tenant:acme'
    """
    values = {_ALIASES.get(k, k): v for k, v in context.items()}
    segments = [f"{name}:{_clean(values.get(name, UNKNOWN))}" for name in COARSE_FIELDS]
    for name, value in (extra or {}).items():
        segments.append(f"{_clean(name)}:{_clean(value)}")
    return SEPARATOR.join(segments)


def fallback_chain(context_key: str) -> List[str]:
    """Keys to try for ``context_key``, most specific first.

    Example:
        >>> fallback_chain("a|b|c")
        ['a|b|c', 'a|b', 'a']
    """
    segments = [s for s in context_key.split(SEPARATOR) if s]
    return [SEPARATOR.join(segments[:n]) for n in range(len(segments), 0, -1)]
