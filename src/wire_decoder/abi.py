import re
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from eth_utils import keccak

from .conversion import to_hex

_ARRAY_SUFFIX = re.compile(r"\[(\d*)\]$")

AbiEntry = Mapping[str, Any]


def split_array_dimensions(typ: str) -> Tuple[str, List[Optional[int]]]:
    """Split ``uint256[2][]`` into ``("uint256", [2, None])``; the outermost dimension is last."""
    dims: List[Optional[int]] = []
    base = typ
    while True:
        match = _ARRAY_SUFFIX.search(base)
        if not match:
            break
        dims.insert(0, int(match.group(1)) if match.group(1) else None)
        base = base[: match.start()]
    return base, dims


def canonical_type(param: AbiEntry) -> str:
    """ABI type string with tuples expanded, as eth-abi expects it."""
    typ = str(param.get("type", ""))
    if not typ.startswith("tuple"):
        return typ
    suffix = typ[len("tuple"):]
    inner = ",".join(canonical_type(component) for component in param.get("components") or [])
    return f"({inner}){suffix}"


def is_dynamic(param: AbiEntry) -> bool:
    base, dims = split_array_dimensions(str(param.get("type", "")))
    return _is_dynamic(base, dims, param.get("components") or [])


def _is_dynamic(base: str, dims: List[Optional[int]], components: Sequence[AbiEntry]) -> bool:
    if dims:
        if dims[-1] is None:
            return True
        return _is_dynamic(base, dims[:-1], components)
    if base in {"bytes", "string"}:
        return True
    if base == "tuple":
        return any(is_dynamic(component) for component in components)
    return False


def head_size(param: AbiEntry) -> int:
    """Bytes the parameter occupies in the head of an ABI encoding."""
    if is_dynamic(param):
        return 32
    base, dims = split_array_dimensions(str(param.get("type", "")))
    return _static_size(base, dims, param.get("components") or [])


def _static_size(base: str, dims: List[Optional[int]], components: Sequence[AbiEntry]) -> int:
    if dims:
        return int(dims[-1] or 0) * _static_size(base, dims[:-1], components)
    if base == "tuple":
        return sum(head_size(component) for component in components)
    return 32


def signature(entry: AbiEntry) -> str:
    types = ",".join(canonical_type(param) for param in entry.get("inputs") or [])
    return f"{entry.get('name', '')}({types})"


def function_selector(entry: AbiEntry) -> str:
    return to_hex(keccak(text=signature(entry))[:4])


def event_selector(entry: AbiEntry) -> str:
    return to_hex(keccak(text=signature(entry)))


def entries_of_type(abi: Sequence[AbiEntry], kind: str) -> List[Dict[str, Any]]:
    return [dict(entry) for entry in abi if entry.get("type", "function") == kind]
