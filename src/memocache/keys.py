"""Cache key derivation.

Design:
- Function identity comes from an explicit name when one is registered,
  otherwise from the module-qualified name of the function
- Arguments are canonicalized with type tags, JSON-encoded and hashed
  with sha256
"""

import functools
import hashlib
import inspect
import json
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from .models import CacheKey

_NAME_ATTR = "__cache_name__"


def cache_name(name: str) -> Callable[[Callable], Callable]:
    """Attach a stable cache name to a compute function.

    Two functions registered under the same name share cache entries, so
    renaming or moving a function keeps its cached results reachable.
    """
    if not isinstance(name, str) or not name:
        raise ValueError("cache name must be a non-empty string")

    def decorator(fn: Callable) -> Callable:
        setattr(fn, _NAME_ATTR, name)
        return fn

    return decorator


def function_identity(fn: Callable) -> str:
    """Return the identity string used for *fn* in cache keys.

    Lambdas and functions defined inside other functions have no importable
    name, so they are identified by object identity as well.
    """
    explicit = getattr(fn, _NAME_ATTR, None)
    if explicit:
        return explicit

    if isinstance(fn, functools.partial):
        inner = function_identity(fn.func)
        bound = compute_cache_key({"args": list(fn.args), "kwargs": fn.keywords})
        return f"{inner}[partial:{bound[:12]}]"

    if inspect.ismethod(fn):
        return f"{function_identity(fn.__func__)}@{id(fn.__self__):x}"

    module = getattr(fn, "__module__", None) or "?"
    qualname = getattr(fn, "__qualname__", None)
    if qualname is None:
        # callable instance
        return f"{module}.{type(fn).__qualname__}@{id(fn):x}"
    identity = f"{module}.{qualname}"
    if "<" in qualname:
        identity = f"{identity}@{id(fn):x}"
    return identity


def _type_name(value: Any) -> str:
    kind = type(value)
    return f"{kind.__module__}.{kind.__qualname__}"


def _encode(canonical: Any) -> str:
    return json.dumps(canonical, separators=(",", ":"))


def canonicalize(value: Any) -> Any:
    """Convert *value* into a type-tagged, JSON-encodable structure.

    Every node is a ``[type name, content]`` pair, so ``1``, ``1.0``, ``"1"``
    and ``Decimal("1")`` stay distinct. Mapping items and set members are
    ordered by their canonical encoding, which works for mixed key types.
    Objects without a structural form fall back to ``repr``.
    """
    tag = _type_name(value)
    if value is None or isinstance(value, (bool, int, float, str)):
        return [tag, value]
    if isinstance(value, (bytes, bytearray)):
        return [tag, bytes(value).hex()]
    if isinstance(value, (list, tuple)):
        return [tag, [canonicalize(item) for item in value]]
    if isinstance(value, (set, frozenset)):
        return [tag, sorted((canonicalize(item) for item in value), key=_encode)]
    if isinstance(value, Mapping):
        items = [[canonicalize(k), canonicalize(v)] for k, v in value.items()]
        return [tag, sorted(items, key=lambda pair: _encode(pair[0]))]
    return [tag, repr(value)]


def compute_cache_key(payload: Dict[str, Any]) -> str:
    """Compute stable sha256 hash for cache key.

    Args:
        payload: Cache payload dict, serialized via :func:`canonicalize`

    Returns:
        Hex digest string
    """
    serialized = _encode(canonicalize(payload))
    return hashlib.sha256(serialized.encode()).hexdigest()


def make_key(
    fn: Callable,
    args: Sequence[Any] = (),
    kwargs: Optional[Mapping[str, Any]] = None,
    name: Optional[str] = None,
) -> CacheKey:
    """Derive the CacheKey for calling *fn* with *args* / *kwargs*."""
    payload = {"args": list(args), "kwargs": dict(kwargs or {})}
    return CacheKey(
        function=name or function_identity(fn),
        digest=compute_cache_key(payload),
    )
