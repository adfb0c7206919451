from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Tuple

from .artifacts import ContractDefinition

AstNode = Dict[str, Any]


@dataclass(frozen=True)
class UserDefinedType:
    id: int
    kind: str
    type_name: str
    defining_contract_name: Optional[str] = None
    contract_kind: Optional[str] = None
    members: Tuple[Tuple[str, str], ...] = ()
    options: Tuple[str, ...] = ()

    @property
    def qualified_name(self) -> str:
        if self.defining_contract_name:
            return f"{self.defining_contract_name}.{self.type_name}"
        return self.type_name


def type_string(node: AstNode) -> str:
    return str((node.get("typeDescriptions") or {}).get("typeString") or "")


def definition_to_type(node: AstNode, contract_name: Optional[str] = None) -> UserDefinedType:
    node_type = node.get("nodeType")
    if node_type == "ContractDefinition":
        return UserDefinedType(
            id=int(node["id"]),
            kind="contract",
            type_name=str(node["name"]),
            contract_kind=str(node.get("contractKind") or "contract"),
        )
    if node_type == "StructDefinition":
        return UserDefinedType(
            id=int(node["id"]),
            kind="struct",
            type_name=str(node["name"]),
            defining_contract_name=contract_name,
            members=tuple((str(m.get("name", "")), type_string(m)) for m in node.get("members") or []),
        )
    if node_type == "EnumDefinition":
        return UserDefinedType(
            id=int(node["id"]),
            kind="enum",
            type_name=str(node["name"]),
            defining_contract_name=contract_name,
            options=tuple(str(m.get("name", "")) for m in node.get("members") or []),
        )
    raise ValueError(f"Not a user-defined type definition: {node_type}.")


def collect_user_defined_types(
    definitions: Iterable[ContractDefinition],
) -> Tuple[Dict[int, AstNode], Dict[int, UserDefinedType]]:
    """
    Gather each contract's AST node and its struct/enum definitions.

    Returns the referenced AST nodes and the type records, both keyed by AST id.
    """
    references: Dict[int, AstNode] = {}
    types: Dict[int, UserDefinedType] = {}
    for definition in definitions:
        node = definition.ast_node
        references[definition.id] = node
        types[definition.id] = definition_to_type(node)
        for child in node.get("nodes") or []:
            if child.get("nodeType") in ("StructDefinition", "EnumDefinition"):
                references[int(child["id"])] = child
                types[int(child["id"])] = definition_to_type(child, definition.name)
    return references, types
