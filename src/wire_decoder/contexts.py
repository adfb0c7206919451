"""
Contract contexts: fingerprints of known bytecode used to attribute on-chain
code to a contract.

Each context stores its bytecode with every link-placeholder range zeroed,
together with those ranges, so that a deployed copy carrying real library
addresses still matches byte-for-byte outside the placeholders.
"""
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from eth_utils import keccak

from .artifacts import ADDRESS_LENGTH, ContractDefinition, LinkReference
from .conversion import to_bytes, to_hex

logger = logging.getLogger(__name__)

WORD_SIZE = 32
PUSH20 = 0x73

Range = Tuple[int, int]


@dataclass(frozen=True)
class Context:
    contract_id: int
    contract_name: str
    contract_kind: str
    is_constructor: bool
    binary: bytes
    placeholders: Tuple[Range, ...]
    hash: str
    abi: List[Dict[str, Any]] = field(default_factory=list, compare=False, repr=False)
    compiler: Optional[Dict[str, Any]] = field(default=None, compare=False, repr=False)
    payable: bool = False

    def matches(self, binary: bytes) -> bool:
        return match_context(self, binary)


def normalize_binary(binary: bytes, ranges: Iterable[Range]) -> bytes:
    """Zero the given (offset, length) ranges, clipped to the binary length."""
    normalized = bytearray(binary)
    size = len(normalized)
    for offset, length in ranges:
        start = min(offset, size)
        end = min(offset + length, size)
        normalized[start:end] = bytes(end - start)
    return bytes(normalized)


def fingerprint(binary: bytes) -> str:
    return to_hex(keccak(binary))


def make_context(definition: ContractDefinition, is_constructor: bool = False) -> Context:
    if is_constructor:
        raw = definition.bytecode
        refs: Sequence[LinkReference] = definition.link_references
    else:
        raw = definition.deployed_bytecode
        refs = definition.deployed_link_references

    ranges = [(ref.offset, ref.length) for ref in refs]
    # a library's runtime code opens with PUSH20 <own address>, filled in at deployment
    if definition.is_library and not is_constructor and raw[:1] == bytes([PUSH20]):
        ranges.append((1, ADDRESS_LENGTH))
    ranges = sorted(set(ranges))

    binary = normalize_binary(raw, ranges)
    return Context(
        contract_id=definition.id,
        contract_name=definition.name,
        contract_kind=definition.kind,
        is_constructor=is_constructor,
        binary=binary,
        placeholders=tuple(ranges),
        hash=fingerprint(binary),
        abi=definition.abi,
        compiler=definition.compiler,
        payable=_is_payable(definition.abi),
    )


def _is_payable(abi: Sequence[Mapping[str, Any]]) -> bool:
    for entry in abi:
        if entry.get("type") in ("fallback", "receive"):
            if entry.get("stateMutability") == "payable" or entry.get("payable"):
                return True
    return False


def match_context(context: Context, binary: bytes) -> bool:
    """
    Structural match of queried code against a stored pattern.

    The query may be longer than the pattern (appended metadata, or constructor
    arguments, which must then be whole words). Outside placeholder ranges the
    overlapping bytes must be equal.
    """
    pattern = context.binary
    extra = len(binary) - len(pattern)
    if extra < 0:
        return False
    if context.is_constructor and extra % WORD_SIZE != 0:
        return False
    head = normalize_binary(binary[: len(pattern)], context.placeholders)
    return head == pattern


def find_context(contexts: Iterable[Context], binary: Union[bytes, str, None]) -> Optional[Context]:
    """
    Pick the context matching the given code.

    The longest matching pattern wins; among equally long matches the one that
    comes last in iteration order (the last registered) wins.
    """
    code = to_bytes(binary)
    if not code:
        return None

    best: Optional[Context] = None
    for context in contexts:
        if not context.binary or not match_context(context, code):
            continue
        if best is not None and len(context.binary) == len(best.binary):
            logger.debug(
                f"Ambiguous context match between {best.contract_name} and "
                f"{context.contract_name}; keeping the later one."
            )
        if best is None or len(context.binary) >= len(best.binary):
            best = context
    return best


class ContextRegistry:
    """Indexes contexts built from known contracts and resolves code to them."""

    def __init__(self, definitions: Iterable[ContractDefinition] = ()) -> None:
        by_hash: Dict[str, Context] = {}
        for definition in definitions:
            if definition.deployed_bytecode:
                self._register(by_hash, make_context(definition))
            if definition.bytecode:
                self._register(by_hash, make_context(definition, is_constructor=True))

        by_id: Dict[int, Context] = {}
        constructors_by_id: Dict[int, Context] = {}
        for context in by_hash.values():
            target = constructors_by_id if context.is_constructor else by_id
            target[context.contract_id] = context

        self._by_hash = MappingProxyType(by_hash)
        self._by_id = MappingProxyType(by_id)
        self._constructors_by_id = MappingProxyType(constructors_by_id)
        logger.debug(
            f"Context registry built: {len(by_id)} runtime, {len(constructors_by_id)} constructor contexts."
        )

    @staticmethod
    def _register(by_hash: Dict[str, Context], context: Context) -> None:
        # re-inserting moves the key to the end so iteration order is registration order
        previous = by_hash.pop(context.hash, None)
        if previous is not None:
            logger.debug(
                f"{context.contract_name} normalizes to the same binary as "
                f"{previous.contract_name}; the later registration wins."
            )
        by_hash[context.hash] = context

    @property
    def by_hash(self) -> Mapping[str, Context]:
        return self._by_hash

    @property
    def by_id(self) -> Mapping[int, Context]:
        return self._by_id

    @property
    def constructors_by_id(self) -> Mapping[int, Context]:
        return self._constructors_by_id

    def resolve(
        self,
        binary: Union[bytes, str, None],
        additional_contexts: Optional[Mapping[int, Context]] = None,
    ) -> Optional[Context]:
        candidates: List[Context] = list(self._by_hash.values())
        if additional_contexts:
            candidates.extend(additional_contexts.values())
        context = find_context(candidates, binary)
        if context is None:
            logger.debug("No context matches the queried code.")
        else:
            logger.debug(
                f"Resolved {'constructor' if context.is_constructor else 'runtime'} "
                f"context {context.contract_name} ({context.hash})."
            )
        return context
