"""
Default layout builder: storage, ABI, calldata and event allocation tables.

The tables are computed once from the contract definitions and are read-only
afterwards. A different builder can be handed to the decoder as long as it
returns an ``AllocationTables``.
"""
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from . import abi as abi_utils
from .artifacts import ContractDefinition
from .contexts import Context
from .definitions import AstNode, type_string

logger = logging.getLogger(__name__)

SLOT_SIZE = 32
SELECTOR_SIZE = 4

_INT_TYPE = re.compile(r"^u?int(\d*)$")
_FIXED_BYTES = re.compile(r"^bytes(\d+)$")
_FIXED_POINT = re.compile(r"^u?fixed(\d+)x\d+$")
_STATIC_ARRAY = re.compile(r"^(.*)\[(\d+)\]$")
_LOCATION_SUFFIX = re.compile(r" (storage ref|storage pointer|memory|calldata)$")


@dataclass(frozen=True)
class ArgumentAllocation:
    name: str
    abi_type: str
    internal_type: Optional[str]
    offset: int
    dynamic: bool
    indexed: bool = False


@dataclass(frozen=True)
class FunctionAllocation:
    kind: str
    name: str
    selector: str
    signature: str
    offset: int
    arguments: Tuple[ArgumentAllocation, ...]
    abi: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class CalldataAllocation:
    functions: Mapping[str, FunctionAllocation]
    constructor: Optional[FunctionAllocation] = None


@dataclass(frozen=True)
class EventAllocation:
    contract_id: int
    name: str
    selector: str
    signature: str
    arguments: Tuple[ArgumentAllocation, ...]
    abi: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class StorageAllocation:
    name: str
    type_string: str
    slot: int
    offset: int
    size: int
    defining_contract_name: str


@dataclass(frozen=True)
class MemberAllocation:
    name: str
    type_string: str
    offset: int
    dynamic: bool


@dataclass(frozen=True)
class StructAllocation:
    struct_id: int
    members: Tuple[MemberAllocation, ...]
    dynamic: bool
    size: int


@dataclass(frozen=True)
class AllocationTables:
    storage: Mapping[int, Tuple[StorageAllocation, ...]]
    abi: Mapping[int, StructAllocation]
    calldata: Mapping[int, CalldataAllocation]
    event: Mapping[str, Mapping[int, EventAllocation]]


LayoutBuilder = Callable[
    [Sequence[ContractDefinition], Mapping[int, AstNode], Mapping[int, Context]],
    AllocationTables,
]


def build_allocations(
    definitions: Sequence[ContractDefinition],
    references: Mapping[int, AstNode],
    constructor_contexts: Mapping[int, Context],
) -> AllocationTables:
    structs = _structs_by_name(references)
    abi_allocations = get_abi_allocations(references, structs)
    storage = {
        definition.id: get_storage_allocations(definition, references, structs)
        for definition in definitions
    }
    calldata = {
        definition.id: get_calldata_allocation(definition, constructor_contexts.get(definition.id))
        for definition in definitions
    }
    event = get_event_allocations(definitions)
    logger.debug(
        f"Allocations built for {len(definitions)} contracts, {len(abi_allocations)} structs, "
        f"{len(event)} event selectors."
    )
    return AllocationTables(storage=storage, abi=abi_allocations, calldata=calldata, event=event)


def allocate_arguments(
    params: Sequence[Mapping[str, Any]], start: int, event: bool = False
) -> Tuple[ArgumentAllocation, ...]:
    """
    Lay out ABI parameters. Offsets are head positions counted from ``start``;
    for events, indexed parameters get their topic position instead.
    """
    allocations: List[ArgumentAllocation] = []
    offset = start
    topic = 1
    for index, param in enumerate(params):
        name = str(param.get("name") or f"arg{index}")
        indexed = bool(event and param.get("indexed"))
        if indexed:
            position = topic
            topic += 1
        else:
            position = offset
            offset += abi_utils.head_size(param)
        allocations.append(
            ArgumentAllocation(
                name=name,
                abi_type=abi_utils.canonical_type(param),
                internal_type=param.get("internalType"),
                offset=position,
                dynamic=abi_utils.is_dynamic(param),
                indexed=indexed,
            )
        )
    return tuple(allocations)


def get_calldata_allocation(
    definition: ContractDefinition, constructor_context: Optional[Context]
) -> CalldataAllocation:
    functions: Dict[str, FunctionAllocation] = {}
    for entry in abi_utils.entries_of_type(definition.abi, "function"):
        selector = abi_utils.function_selector(entry)
        functions[selector] = FunctionAllocation(
            kind="function",
            name=str(entry.get("name", "")),
            selector=selector,
            signature=abi_utils.signature(entry),
            offset=SELECTOR_SIZE,
            arguments=allocate_arguments(entry.get("inputs") or [], SELECTOR_SIZE),
            abi=entry,
        )

    constructor = None
    if constructor_context is not None:
        entries = abi_utils.entries_of_type(definition.abi, "constructor")
        entry = entries[0] if entries else {"type": "constructor", "inputs": []}
        start = len(constructor_context.binary)
        constructor = FunctionAllocation(
            kind="constructor",
            name=definition.name,
            selector="",
            signature=abi_utils.signature({**entry, "name": definition.name}),
            offset=start,
            arguments=allocate_arguments(entry.get("inputs") or [], 0),
            abi=entry,
        )
    return CalldataAllocation(functions=functions, constructor=constructor)


def get_event_allocations(
    definitions: Sequence[ContractDefinition],
) -> Dict[str, Dict[int, EventAllocation]]:
    events: Dict[str, Dict[int, EventAllocation]] = {}
    for definition in definitions:
        for entry in abi_utils.entries_of_type(definition.abi, "event"):
            if entry.get("anonymous"):
                continue
            selector = abi_utils.event_selector(entry)
            events.setdefault(selector, {})[definition.id] = EventAllocation(
                contract_id=definition.id,
                name=str(entry.get("name", "")),
                selector=selector,
                signature=abi_utils.signature(entry),
                arguments=allocate_arguments(entry.get("inputs") or [], 0, event=True),
                abi=entry,
            )
    return events


def get_storage_allocations(
    definition: ContractDefinition,
    references: Mapping[int, AstNode],
    structs: Mapping[str, AstNode],
) -> Tuple[StorageAllocation, ...]:
    """State variables of the contract and its bases, most-base first, packed into slots."""
    variables: List[Tuple[str, AstNode]] = []
    base_ids = definition.ast_node.get("linearizedBaseContracts") or [definition.id]
    for base_id in reversed(base_ids):
        node = references.get(base_id)
        if node is None:
            logger.debug(f"Base contract {base_id} of {definition.name} is unknown; its storage is skipped.")
            continue
        for child in node.get("nodes") or []:
            if child.get("nodeType") != "VariableDeclaration" or not child.get("stateVariable"):
                continue
            if child.get("constant") or child.get("mutability") in ("constant", "immutable"):
                continue
            variables.append((str(node.get("name", "")), child))

    allocations: List[StorageAllocation] = []
    cursor = _SlotCursor()
    for contract_name, variable in variables:
        typ = type_string(variable)
        size, whole = storage_size(typ, structs)
        slot, offset = cursor.place(size, whole)
        allocations.append(
            StorageAllocation(
                name=str(variable.get("name", "")),
                type_string=typ,
                slot=slot,
                offset=offset,
                size=size,
                defining_contract_name=contract_name,
            )
        )
    return tuple(allocations)


class _SlotCursor:
    def __init__(self) -> None:
        self.slot = 0
        self.offset = 0

    def place(self, size: int, whole: bool) -> Tuple[int, int]:
        if self.offset > 0 and (whole or self.offset + size > SLOT_SIZE):
            self.slot += 1
            self.offset = 0
        position = (self.slot, self.offset)
        if whole:
            self.slot += max(1, math.ceil(size / SLOT_SIZE))
        else:
            self.offset += size
        return position

    @property
    def slots_used(self) -> int:
        return self.slot + (1 if self.offset > 0 else 0)


def storage_size(typ: str, structs: Mapping[str, AstNode]) -> Tuple[int, bool]:
    """
    Storage footprint of a Solidity type string: (bytes, occupies whole slots).
    """
    typ = _LOCATION_SUFFIX.sub("", typ.strip())

    if typ.startswith("mapping(") or typ in ("string", "bytes") or typ.endswith("[]"):
        return SLOT_SIZE, True

    array = _STATIC_ARRAY.match(typ)
    if array:
        element_size, element_whole = storage_size(array.group(1), structs)
        length = int(array.group(2))
        if element_whole:
            slots = math.ceil(element_size / SLOT_SIZE) * length
        else:
            per_slot = SLOT_SIZE // element_size
            slots = math.ceil(length / per_slot)
        return slots * SLOT_SIZE, True

    if typ.startswith("struct "):
        node = structs.get(typ[len("struct "):])
        if node is None:
            return SLOT_SIZE, True
        cursor = _SlotCursor()
        for member in node.get("members") or []:
            cursor.place(*storage_size(type_string(member), structs))
        return max(1, cursor.slots_used) * SLOT_SIZE, True

    if typ == "bool" or typ.startswith("enum "):
        return 1, False
    if typ in ("address", "address payable") or typ.startswith("contract "):
        return 20, False
    if typ.startswith("function "):
        return (24 if " external" in typ else 8), False

    for pattern in (_INT_TYPE, _FIXED_BYTES, _FIXED_POINT):
        match = pattern.match(typ)
        if match:
            bits_or_bytes = int(match.group(1) or 256)
            size = bits_or_bytes if pattern is _FIXED_BYTES else bits_or_bytes // 8
            return size, False

    return SLOT_SIZE, True


def get_abi_allocations(
    references: Mapping[int, AstNode], structs: Mapping[str, AstNode]
) -> Dict[int, StructAllocation]:
    allocations: Dict[int, StructAllocation] = {}
    for node_id, node in references.items():
        if node.get("nodeType") != "StructDefinition":
            continue
        allocations[node_id] = _struct_abi_allocation(node_id, node, structs, depth=0)
    return allocations


def _struct_abi_allocation(
    node_id: int, node: AstNode, structs: Mapping[str, AstNode], depth: int
) -> StructAllocation:
    members: List[MemberAllocation] = []
    offset = 0
    for member in node.get("members") or []:
        typ = type_string(member)
        if typ.startswith("mapping("):
            continue
        size, dynamic = _abi_head(typ, structs, depth)
        members.append(
            MemberAllocation(name=str(member.get("name", "")), type_string=typ, offset=offset, dynamic=dynamic)
        )
        offset += size
    dynamic = any(member.dynamic for member in members)
    return StructAllocation(
        struct_id=node_id, members=tuple(members), dynamic=dynamic, size=SLOT_SIZE if dynamic else offset
    )


def _abi_head(typ: str, structs: Mapping[str, AstNode], depth: int) -> Tuple[int, bool]:
    typ = _LOCATION_SUFFIX.sub("", typ.strip())
    if typ in ("string", "bytes") or typ.endswith("[]"):
        return SLOT_SIZE, True
    array = _STATIC_ARRAY.match(typ)
    if array:
        element_size, element_dynamic = _abi_head(array.group(1), structs, depth)
        if element_dynamic:
            return SLOT_SIZE, True
        return element_size * int(array.group(2)), False
    if typ.startswith("struct ") and depth < 16:
        node = structs.get(typ[len("struct "):])
        if node is not None:
            nested = _struct_abi_allocation(int(node["id"]), node, structs, depth + 1)
            return nested.size, nested.dynamic
    return SLOT_SIZE, False


def _structs_by_name(references: Mapping[int, AstNode]) -> Dict[str, AstNode]:
    """Struct nodes keyed the way type strings name them (``Contract.Struct``)."""
    contract_of: Dict[int, str] = {}
    for node in references.values():
        if node.get("nodeType") == "ContractDefinition":
            for child in node.get("nodes") or []:
                contract_of[int(child.get("id", -1))] = str(node.get("name", ""))

    structs: Dict[str, AstNode] = {}
    for node_id, node in references.items():
        if node.get("nodeType") != "StructDefinition":
            continue
        canonical = node.get("canonicalName")
        if not canonical:
            owner = contract_of.get(node_id)
            canonical = f"{owner}.{node['name']}" if owner else str(node["name"])
        structs[str(canonical)] = node
    return structs
