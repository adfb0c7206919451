"""
wire_decoder: attribute on-chain transactions and event logs to known
contracts and decode them.

Quick start::

    from wire_decoder import RpcClient, WireDecoder

    decoder = WireDecoder.from_artifacts(artifacts, RpcClient("http://localhost:8545"))
    decoded = decoder.decode_transaction(tx)
    print(decoded["decoding"])
"""

from .allocation import AllocationTables, build_allocations
from .artifacts import ContractDefinition, LinkReference, load_definitions
from .cache import CodeCache
from .codec import AbiCodec, CodecEngine, DecodeEnvironment
from .config import DecoderConfig, load_config
from .contexts import Context, ContextRegistry, find_context, fingerprint, normalize_binary
from .decoder import WireDecoder
from .driver import DecodeDriver
from .errors import ArtifactError, TransportError, UnsupportedRequestError, WireDecoderError
from .log_config import setup_logging
from .models import (
    Argument,
    ConstructorDecoding,
    ContractValue,
    EventDecoding,
    FunctionDecoding,
    MessageDecoding,
    UnknownDecoding,
)
from .process import CodeRequest, Done, GeneratorProcess, StorageRequest, Suspended
from .rpc_client import ChainTransport, RpcClient

__version__ = "0.1.0"
__all__ = [
    "AbiCodec",
    "AllocationTables",
    "Argument",
    "ArtifactError",
    "ChainTransport",
    "CodeCache",
    "CodeRequest",
    "CodecEngine",
    "ConstructorDecoding",
    "Context",
    "ContextRegistry",
    "ContractDefinition",
    "ContractValue",
    "DecodeDriver",
    "DecodeEnvironment",
    "DecoderConfig",
    "Done",
    "EventDecoding",
    "FunctionDecoding",
    "GeneratorProcess",
    "LinkReference",
    "MessageDecoding",
    "RpcClient",
    "StorageRequest",
    "Suspended",
    "TransportError",
    "UnknownDecoding",
    "UnsupportedRequestError",
    "WireDecoder",
    "WireDecoderError",
    "build_allocations",
    "find_context",
    "fingerprint",
    "load_config",
    "load_definitions",
    "normalize_binary",
    "setup_logging",
    "__version__",
]
