"""
Tag identity normalization.

Three textual encodings of the same tag identifier are accepted and mapped to
one canonical key:

    NS2|String|R0001   vendor-compact form      -> ns=2;s=R0001
    ns=2;s=R0001       already qualified        -> unchanged
    R0001              bare token               -> ns=2;s=R0001

The canonical key is the join key between the simulation engine, the override
store, the change fan-out and every sink that maps writes back to tree nodes.
"""
import re
from typing import Optional, Tuple

DEFAULT_NAMESPACE = 2

_COMPACT_RE = re.compile(r"^NS(\d+)\|[^|]*\|(.*)$", re.IGNORECASE | re.DOTALL)
_QUALIFIED_RE = re.compile(r"^ns=(\d+);s=(.*)$", re.IGNORECASE | re.DOTALL)


def normalize(raw: Optional[str]) -> str:
    """Map any accepted identifier encoding to its canonical key."""
    key = (raw or "").strip()
    match = _COMPACT_RE.match(key)
    if match:
        key = f"ns={match.group(1)};s={match.group(2)}"
    if not key.lower().startswith("ns="):
        key = f"ns={DEFAULT_NAMESPACE};s={key}"
    return key


def qualify(identifier: str, namespace_index=DEFAULT_NAMESPACE) -> str:
    """Build a string-identifier key in the given namespace."""
    return f"ns={namespace_index};s={identifier}"


def split_key(key: str) -> Optional[Tuple[int, str]]:
    """Return (namespace index, identifier) for a string-identifier key, else None."""
    match = _QUALIFIED_RE.match(key)
    if not match:
        return None
    return int(match.group(1)), match.group(2)
