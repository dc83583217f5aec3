# core/idempotency.py
import hashlib
import json
from typing import Mapping, Optional, Union

Primitive = Optional[Union[str, int, float, bool]]


def derive_idempotency_key(action: str, args: Mapping[str, Primitive]) -> str:
    """
    Stable idempotency key for a mutating provider call.

    Keys are sorted before hashing so insertion order never matters, and any
    differing argument value yields a different key. Nothing is stored: callers
    recompute it from current local state on every attempt so retries collide.
    """
    if not action:
        raise ValueError("action is required")
    canonical = json.dumps(dict(args), sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha256(f"{action}|{canonical}".encode("utf-8")).hexdigest()
    return f"{action}_{digest}"
