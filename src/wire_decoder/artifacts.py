"""
Contract definitions as consumed by the decoder.

A definition is built once from a compiled artifact (Truffle-style JSON) and is
immutable afterwards. Unlinked bytecode carries 40-character textual
placeholders where library addresses will be substituted at deployment; these
are recorded as link references and zeroed so the rest of the bytecode can be
handled as plain bytes.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .conversion import to_bytes
from .errors import ArtifactError

logger = logging.getLogger(__name__)

ADDRESS_LENGTH = 20
PLACEHOLDER_PATTERN = re.compile(r"__.{36}__")


@dataclass(frozen=True)
class LinkReference:
    name: str
    offset: int
    length: int = ADDRESS_LENGTH

    @property
    def end(self) -> int:
        return self.offset + self.length


@dataclass(frozen=True)
class ContractDefinition:
    id: int
    name: str
    kind: str
    abi: List[Dict[str, Any]] = field(default_factory=list, compare=False)
    ast_node: Dict[str, Any] = field(default_factory=dict, compare=False)
    bytecode: bytes = b""
    deployed_bytecode: bytes = b""
    link_references: Tuple[LinkReference, ...] = ()
    deployed_link_references: Tuple[LinkReference, ...] = ()
    compiler: Optional[Dict[str, Any]] = field(default=None, compare=False)

    @property
    def is_library(self) -> bool:
        return self.kind == "library"

    @classmethod
    def from_artifact(cls, artifact: Mapping[str, Any]) -> Optional["ContractDefinition"]:
        """
        Build a definition from a compiled artifact.

        Returns None when the artifact's AST has no node for the contract, since
        such a contract has no identity to decode against.
        """
        name = artifact.get("contractName") or artifact.get("contract_name")
        if not name:
            raise ArtifactError("Artifact has no contractName.")

        node = get_contract_node(artifact)
        if node is None:
            logger.warning(f"Skipping artifact '{name}': no ContractDefinition node in its AST.")
            return None

        bytecode, creation_refs = parse_bytecode(artifact.get("bytecode"), f"{name}.bytecode")
        deployed, deployed_refs = parse_bytecode(
            artifact.get("deployedBytecode"), f"{name}.deployedBytecode"
        )
        creation_refs += parse_link_references(artifact.get("linkReferences"))
        deployed_refs += parse_link_references(artifact.get("deployedLinkReferences"))

        return cls(
            id=int(node["id"]),
            name=str(name),
            kind=str(node.get("contractKind") or "contract"),
            abi=list(artifact.get("abi") or []),
            ast_node=node,
            bytecode=bytecode,
            deployed_bytecode=deployed,
            link_references=_dedupe(creation_refs),
            deployed_link_references=_dedupe(deployed_refs),
            compiler=artifact.get("compiler"),
        )


def get_contract_node(artifact: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    name = artifact.get("contractName") or artifact.get("contract_name")
    ast = artifact.get("ast") or {}
    for node in ast.get("nodes") or []:
        if node.get("nodeType") == "ContractDefinition" and node.get("name") == name:
            return node
    return None


def parse_bytecode(raw: Any, label: str = "bytecode") -> Tuple[bytes, Tuple[LinkReference, ...]]:
    """
    Parse hex bytecode that may contain textual link placeholders.

    Also accepts the ``{"bytes": ..., "linkReferences": [...]}`` shape, where
    the placeholders have already been stripped from the hex.
    """
    if raw is None:
        return b"", ()
    if isinstance(raw, Mapping):
        body, refs = parse_bytecode(raw.get("bytes"), label)
        return body, refs + parse_link_references(raw.get("linkReferences"))
    if isinstance(raw, (bytes, bytearray)):
        return bytes(raw), ()
    if not isinstance(raw, str):
        raise ArtifactError(f"{label} must be a hex string.")

    body = raw[2:] if raw[:2] in ("0x", "0X") else raw
    refs: List[LinkReference] = []
    for match in PLACEHOLDER_PATTERN.finditer(body):
        if match.start() % 2 != 0:
            raise ArtifactError(f"{label} has a misaligned link placeholder at {match.start()}.")
        refs.append(LinkReference(_placeholder_name(match.group(0)), match.start() // 2))
    body = PLACEHOLDER_PATTERN.sub("0" * (2 * ADDRESS_LENGTH), body)

    try:
        return to_bytes(body), tuple(refs)
    except ValueError as exc:
        raise ArtifactError(f"{label} is not valid hex: {exc}") from exc


def parse_link_references(raw: Any) -> Tuple[LinkReference, ...]:
    """
    Accepts a list of ``{name, offset|start|offsets, length}`` entries or the
    solc shape ``{source: {library: [{start, length}]}}``.
    """
    if not raw:
        return ()
    refs: List[LinkReference] = []
    if isinstance(raw, Mapping):
        for libraries in raw.values():
            for lib_name, positions in (libraries or {}).items():
                for position in positions or []:
                    refs.append(
                        LinkReference(
                            name=str(lib_name),
                            offset=int(position["start"]),
                            length=int(position.get("length", ADDRESS_LENGTH)),
                        )
                    )
        return tuple(refs)

    for entry in raw:
        if not isinstance(entry, Mapping):
            raise ArtifactError(f"Malformed link reference: {entry!r}.")
        name = str(entry.get("name") or "")
        length = int(entry.get("length", ADDRESS_LENGTH))
        if "offsets" in entry:
            offsets: Iterable[Any] = entry["offsets"] or []
        else:
            offsets = [entry.get("offset", entry.get("start"))]
        for offset in offsets:
            if offset is None:
                raise ArtifactError(f"Link reference without offset: {entry!r}.")
            refs.append(LinkReference(name=name, offset=int(offset), length=length))
    return tuple(refs)


def load_definitions(artifacts: Iterable[Mapping[str, Any]]) -> List[ContractDefinition]:
    definitions = []
    for artifact in artifacts:
        definition = ContractDefinition.from_artifact(artifact)
        if definition is not None:
            definitions.append(definition)
    return definitions


def _placeholder_name(placeholder: str) -> str:
    return placeholder.strip("_").strip("$")


def _dedupe(refs: Tuple[LinkReference, ...]) -> Tuple[LinkReference, ...]:
    seen = {}
    for ref in refs:
        seen.setdefault((ref.offset, ref.length), ref)
    return tuple(sorted(seen.values(), key=lambda ref: ref.offset))
