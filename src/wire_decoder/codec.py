"""
Default codec engine.

Decoding is written as generators that yield ``CodeRequest`` objects whenever
they need on-chain code (to tell which contract emitted a log, or which class
an address argument belongs to) and are resumed with the bytes. They never do
I/O themselves; see ``driver.DecodeDriver``.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError

from .allocation import AllocationTables, ArgumentAllocation, EventAllocation
from .contexts import Context, find_context
from .conversion import to_hex
from .definitions import UserDefinedType
from .models import (
    Argument,
    ConstructorDecoding,
    ContractValue,
    EventDecoding,
    FunctionDecoding,
    MessageDecoding,
    UnknownDecoding,
)
from .process import CodeRequest, DecodeGenerator, DecodeProcess, GeneratorProcess

logger = logging.getLogger(__name__)

# eth-abi decodes string values strictly, so non-UTF-8 bytes fail the candidate too
_DECODE_ERRORS = (DecodingError, UnicodeDecodeError)

SELECTOR_SIZE = 4


@dataclass(frozen=True)
class DecodeEnvironment:
    """Everything one decode operation may look at, besides fetched code."""

    user_defined_types: Mapping[int, UserDefinedType]
    allocations: AllocationTables
    contexts: Mapping[int, Context]
    current_context: Optional[Context] = None
    calldata: bytes = b""
    event_data: bytes = b""
    event_topics: Tuple[bytes, ...] = field(default=())


class CodecEngine(Protocol):
    def decode_calldata(self, env: DecodeEnvironment) -> DecodeProcess:
        ...

    def decode_event(
        self, env: DecodeEnvironment, address: str, name: Optional[str] = None
    ) -> DecodeProcess:
        ...


class AbiCodec:
    """Decodes calldata and event logs against contract ABIs using eth-abi."""

    def decode_calldata(self, env: DecodeEnvironment) -> DecodeProcess:
        return GeneratorProcess(self._decode_calldata(env))

    def decode_event(
        self, env: DecodeEnvironment, address: str, name: Optional[str] = None
    ) -> DecodeProcess:
        return GeneratorProcess(self._decode_event(env, address, name))

    def _decode_calldata(self, env: DecodeEnvironment) -> DecodeGenerator:
        context = env.current_context
        data = env.calldata
        if context is None:
            return UnknownDecoding(data=data)

        allocation = env.allocations.calldata.get(context.contract_id)
        if context.is_constructor:
            constructor = allocation.constructor if allocation is not None else None
            if constructor is None:
                return UnknownDecoding(data=data, error=f"No constructor allocation for {context.contract_name}.")
            try:
                arguments = yield from self._decode_arguments(
                    env, constructor.arguments, data[constructor.offset:]
                )
            except _DECODE_ERRORS as exc:
                return UnknownDecoding(data=data, error=str(exc))
            return ConstructorDecoding(
                arguments=arguments,
                class_name=context.contract_name,
                contract_id=context.contract_id,
                bytecode_length=constructor.offset,
                abi=constructor.abi,
            )

        function = None
        if allocation is not None and len(data) >= SELECTOR_SIZE:
            function = allocation.functions.get(to_hex(data[:SELECTOR_SIZE]))
        if function is None:
            return MessageDecoding(
                class_name=context.contract_name,
                contract_id=context.contract_id,
                data=data,
                payable=context.payable,
            )

        try:
            arguments = yield from self._decode_arguments(env, function.arguments, data[function.offset:])
        except _DECODE_ERRORS as exc:
            return UnknownDecoding(data=data, error=str(exc))
        return FunctionDecoding(
            arguments=arguments,
            class_name=context.contract_name,
            contract_id=context.contract_id,
            name=function.name,
            selector=function.selector,
            signature=function.signature,
            abi=function.abi,
        )

    def _decode_event(
        self, env: DecodeEnvironment, address: str, target_name: Optional[str]
    ) -> DecodeGenerator:
        code = yield CodeRequest(address=address)
        context = find_context(env.contexts.values(), code)

        topics = env.event_topics
        if not topics:
            # anonymous events carry no selector to look up
            return []

        candidates = env.allocations.event.get(to_hex(topics[0]), {})
        decodings: List[EventDecoding] = []
        for allocation in self._event_candidates(env, context, candidates):
            if target_name is not None and allocation.name != target_name:
                continue
            indexed = [argument for argument in allocation.arguments if argument.indexed]
            if len(indexed) != len(topics) - 1:
                continue
            try:
                arguments = yield from self._decode_event_arguments(env, allocation, topics, env.event_data)
            except _DECODE_ERRORS as exc:
                logger.debug(f"Dropping candidate {allocation.signature}: {exc}")
                continue
            decodings.append(
                EventDecoding(
                    arguments=arguments,
                    class_name=self._class_name(env, allocation.contract_id),
                    contract_id=allocation.contract_id,
                    name=allocation.name,
                    selector=allocation.selector,
                    signature=allocation.signature,
                    abi=allocation.abi,
                )
            )
        return decodings

    def _event_candidates(
        self,
        env: DecodeEnvironment,
        context: Optional[Context],
        candidates: Mapping[int, EventAllocation],
    ) -> Iterable[EventAllocation]:
        """
        The emitter's own event plus library events when the emitter is known,
        every contract's event under this selector otherwise.
        """
        if context is None:
            return list(candidates.values())
        chosen = []
        if context.contract_id in candidates:
            chosen.append(candidates[context.contract_id])
        for contract_id, allocation in candidates.items():
            udt = env.user_defined_types.get(contract_id)
            if contract_id != context.contract_id and udt is not None and udt.contract_kind == "library":
                chosen.append(allocation)
        return chosen

    def _decode_arguments(
        self, env: DecodeEnvironment, allocations: Sequence[ArgumentAllocation], data: bytes
    ) -> DecodeGenerator:
        values = abi_decode([allocation.abi_type for allocation in allocations], data)
        arguments = []
        for allocation, value in zip(allocations, values):
            if _is_contract_typed(allocation):
                value = yield from self._contract_value(env, value)
            arguments.append(Argument(name=allocation.name, type=allocation.abi_type, value=value))
        return tuple(arguments)

    def _decode_event_arguments(
        self,
        env: DecodeEnvironment,
        allocation: EventAllocation,
        topics: Sequence[bytes],
        data: bytes,
    ) -> DecodeGenerator:
        non_indexed = [argument for argument in allocation.arguments if not argument.indexed]
        data_values = iter(abi_decode([argument.abi_type for argument in non_indexed], data))

        arguments = []
        for argument in allocation.arguments:
            if argument.indexed:
                topic = topics[argument.offset]
                if _is_hashed_when_indexed(argument):
                    value: Any = topic
                else:
                    value = abi_decode([argument.abi_type], topic)[0]
            else:
                value = next(data_values)
            if _is_contract_typed(argument):
                value = yield from self._contract_value(env, value)
            arguments.append(
                Argument(name=argument.name, type=argument.abi_type, value=value, indexed=argument.indexed)
            )
        return tuple(arguments)

    def _contract_value(self, env: DecodeEnvironment, address: str) -> DecodeGenerator:
        code = yield CodeRequest(address=address)
        context = find_context(env.contexts.values(), code)
        if context is None:
            return ContractValue(address=address)
        return ContractValue(address=address, class_name=context.contract_name, contract_id=context.contract_id)

    def _class_name(self, env: DecodeEnvironment, contract_id: int) -> str:
        udt = env.user_defined_types.get(contract_id)
        return udt.type_name if udt is not None else ""


def _is_contract_typed(argument: ArgumentAllocation) -> bool:
    internal = argument.internal_type or ""
    return argument.abi_type == "address" and internal.startswith("contract ")


def _is_hashed_when_indexed(argument: ArgumentAllocation) -> bool:
    return argument.dynamic or argument.abi_type.startswith("(") or argument.abi_type.endswith("]")
