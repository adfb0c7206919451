import logging
from concurrent.futures import ThreadPoolExecutor
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from .allocation import AllocationTables, LayoutBuilder, StructAllocation, build_allocations
from .artifacts import ContractDefinition, load_definitions
from .cache import CodeCache
from .codec import AbiCodec, CodecEngine, DecodeEnvironment
from .config import DEFAULT_WORKERS, DecoderConfig
from .contexts import Context, ContextRegistry
from .conversion import BlockId, parse_block_number, to_bytes
from .definitions import AstNode, UserDefinedType, collect_user_defined_types
from .driver import DecodeDriver
from .models import DecodedLog, DecodedTransaction
from .process import DecodeProcess
from .rpc_client import ChainTransport, RpcClient
from .subscriptions import Callback, SubscriptionRegistry

logger = logging.getLogger(__name__)

ContextsById = Mapping[int, Context]


class WireDecoder:
    """Combine known contracts, code cache and chain transport to decode transactions and logs."""

    def __init__(
        self,
        definitions: Iterable[ContractDefinition],
        transport: ChainTransport,
        config: Optional[DecoderConfig] = None,
        codec: Optional[CodecEngine] = None,
        layout_builder: Optional[LayoutBuilder] = None,
    ) -> None:
        self.config = config
        self.transport = transport
        self.codec: CodecEngine = codec or AbiCodec()
        self.code_cache = CodeCache(transport)
        self.subscriptions = SubscriptionRegistry()
        self.max_workers = config.max_workers if config is not None else DEFAULT_WORKERS

        definitions = list(definitions)
        self._contracts: Dict[int, ContractDefinition] = {}
        for definition in definitions:
            self._contracts[definition.id] = definition

        self._registry = ContextRegistry(definitions)
        references, user_defined_types = collect_user_defined_types(self._contracts.values())
        self._references = MappingProxyType(references)
        self._user_defined_types = MappingProxyType(user_defined_types)

        builder = layout_builder or build_allocations
        self._allocations = builder(
            list(self._contracts.values()), self._references, self._registry.constructors_by_id
        )
        logger.debug(f"WireDecoder ready with {len(self._contracts)} contracts.")

    @classmethod
    def from_artifacts(
        cls, artifacts: Iterable[Mapping[str, Any]], transport: ChainTransport, **kwargs: Any
    ) -> "WireDecoder":
        return cls(load_definitions(artifacts), transport, **kwargs)

    @classmethod
    def from_config(
        cls, definitions: Iterable[ContractDefinition], config: DecoderConfig, **kwargs: Any
    ) -> "WireDecoder":
        logging.getLogger(__package__).setLevel(config.log_level)
        transport = RpcClient(
            config.rpc_url,
            timeout=config.request_timeout,
            max_retries=config.max_retries,
            backoff_seconds=config.backoff_seconds,
        )
        return cls(definitions, transport, config=config, **kwargs)

    def get_code(self, address: str, block: Optional[BlockId]) -> bytes:
        return self.code_cache.get(address, block)

    def decode_transaction(
        self,
        transaction: Mapping[str, Any],
        additional_contexts: Optional[ContextsById] = None,
    ) -> DecodedTransaction:
        block = parse_block_number(transaction.get("blockNumber"))
        data = to_bytes(transaction.get("input") or transaction.get("data"))
        context = self._context_by_address(transaction.get("to"), block, data, additional_contexts)

        env = self._environment(additional_contexts, current_context=context, calldata=data)
        decoding = self._run(self.codec.decode_calldata(env), block)
        return {**transaction, "decoding": decoding}

    def decode_transaction_by_hash(
        self, tx_hash: str, additional_contexts: Optional[ContextsById] = None
    ) -> DecodedTransaction:
        fetch = getattr(self.transport, "get_transaction_by_hash", None)
        if fetch is None:
            raise ValueError("The transport cannot fetch transactions by hash.")
        transaction = fetch(tx_hash)
        if transaction is None:
            raise ValueError(f"Transaction {tx_hash} not found.")
        return self.decode_transaction(transaction, additional_contexts)

    def decode_log(
        self,
        log: Mapping[str, Any],
        name: Optional[str] = None,
        additional_contexts: Optional[ContextsById] = None,
    ) -> DecodedLog:
        block = parse_block_number(log.get("blockNumber"))
        data = to_bytes(log.get("data"))
        topics = tuple(to_bytes(topic) for topic in log.get("topics") or [])

        env = self._environment(additional_contexts, event_data=data, event_topics=topics)
        decodings = self._run(self.codec.decode_event(env, log["address"], name), block)
        if name is not None:
            decodings = [decoding for decoding in decodings if decoding.name == name]

        decoded = {**log, "decodings": decodings}
        self._notify(decoded)
        return decoded

    def decode_logs(
        self,
        logs: Iterable[Mapping[str, Any]],
        name: Optional[str] = None,
        additional_contexts: Optional[ContextsById] = None,
    ) -> List[DecodedLog]:
        """Decode logs independently in a thread pool; results keep input order."""
        logs = list(logs)
        if not logs:
            return []
        workers = max(1, min(self.max_workers, len(logs)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="decode-log") as pool:
            futures = [pool.submit(self.decode_log, log, name, additional_contexts) for log in logs]
            return [future.result() for future in futures]

    def events(
        self,
        address: Optional[str] = None,
        from_block: Optional[BlockId] = None,
        to_block: Optional[BlockId] = None,
        name: Optional[str] = None,
        additional_contexts: Optional[ContextsById] = None,
    ) -> List[DecodedLog]:
        logs = self.transport.get_past_logs(address=address, from_block=from_block, to_block=to_block)
        events = self.decode_logs(logs, name, additional_contexts)
        logger.debug(f"Decoded {len(events)} log(s) from {address or 'any address'}.")

        # with a name, decode_log already kept only same-named decodings
        if name is not None:
            events = [event for event in events if event["decodings"]]
        return events

    def on_event(self, name: str, callback: Callback) -> None:
        self.subscriptions.register(name, callback)

    def remove_event_listener(self, name: str, callback: Optional[Callback] = None) -> None:
        self.subscriptions.unregister(name, callback)

    def _notify(self, decoded: DecodedLog) -> None:
        names = []
        for decoding in decoded["decodings"]:
            if decoding.name not in names:
                names.append(decoding.name)
        for name in names:
            self.subscriptions.dispatch(name, decoded)

    def _context_by_address(
        self,
        address: Optional[str],
        block: Optional[BlockId],
        constructor_binary: bytes,
        additional_contexts: Optional[ContextsById],
    ) -> Optional[Context]:
        """
        Resolve the context from the code at ``address``; a contract creation has
        no address, so its input is matched as constructor bytecode instead.
        """
        if address is not None:
            code = self.get_code(address, block)
        elif constructor_binary:
            code = constructor_binary
        else:
            return None
        return self._registry.resolve(code, additional_contexts)

    def _environment(self, additional_contexts: Optional[ContextsById], **state: Any) -> DecodeEnvironment:
        contexts = dict(self._registry.by_id)
        if additional_contexts:
            contexts.update(additional_contexts)
        return DecodeEnvironment(
            user_defined_types=self._user_defined_types,
            allocations=self._allocations,
            contexts=contexts,
            **state,
        )

    def _run(self, process: DecodeProcess, block: Optional[BlockId]) -> Any:
        return DecodeDriver(self.code_cache, block).run(process)

    def get_reference_declarations(self) -> Mapping[int, AstNode]:
        return self._references

    def get_user_defined_types(self) -> Mapping[int, UserDefinedType]:
        return self._user_defined_types

    def get_allocations(self) -> AllocationTables:
        return self._allocations

    def get_abi_allocations(self) -> Mapping[int, StructAllocation]:
        return self._allocations.abi

    def get_contexts(self) -> Dict[str, Mapping[Any, Context]]:
        return {
            "by_hash": self._registry.by_hash,
            "by_id": self._registry.by_id,
            "constructors_by_id": self._registry.constructors_by_id,
        }

    def get_contracts(self) -> Sequence[ContractDefinition]:
        return list(self._contracts.values())

    def get_transport(self) -> ChainTransport:
        return self.transport
