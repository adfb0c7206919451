from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Tuple

# Original transaction/log fields plus "decoding" / "decodings".
DecodedTransaction = Dict[str, Any]
DecodedLog = Dict[str, Any]


@dataclass(frozen=True)
class ContractValue:
    """An address typed as a contract, with its class when the code was recognized."""

    address: str
    class_name: Optional[str] = None
    contract_id: Optional[int] = None

    @property
    def known(self) -> bool:
        return self.class_name is not None


@dataclass(frozen=True)
class Argument:
    name: str
    type: str
    value: Any
    indexed: bool = False


@dataclass(frozen=True)
class Decoding:
    kind: ClassVar[str] = ""


@dataclass(frozen=True)
class _ArgumentsMixin:
    arguments: Tuple[Argument, ...] = ()

    @property
    def values(self) -> Dict[str, Any]:
        return {argument.name: argument.value for argument in self.arguments}


@dataclass(frozen=True)
class FunctionDecoding(_ArgumentsMixin, Decoding):
    kind: ClassVar[str] = "function"
    class_name: str = ""
    contract_id: Optional[int] = None
    name: str = ""
    selector: str = ""
    signature: str = ""
    abi: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class ConstructorDecoding(_ArgumentsMixin, Decoding):
    kind: ClassVar[str] = "constructor"
    class_name: str = ""
    contract_id: Optional[int] = None
    bytecode_length: int = 0
    abi: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class MessageDecoding(Decoding):
    """Calldata sent to a known contract that matches none of its functions."""

    kind: ClassVar[str] = "message"
    class_name: str = ""
    contract_id: Optional[int] = None
    data: bytes = b""
    payable: bool = False


@dataclass(frozen=True)
class UnknownDecoding(Decoding):
    kind: ClassVar[str] = "unknown"
    data: bytes = b""
    error: Optional[str] = None


@dataclass(frozen=True)
class EventDecoding(_ArgumentsMixin, Decoding):
    kind: ClassVar[str] = "event"
    class_name: str = ""
    contract_id: Optional[int] = None
    name: str = ""
    selector: str = ""
    signature: str = ""
    abi: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


EventDecodings = List[EventDecoding]
