"""
The request/response protocol between a decode process and its driver.

A decode process never performs I/O. Each step either finishes with a result
(``Done``) or suspends with a description of the data it needs
(``Suspended``); the driver fetches that data and resumes the process with it.
"""
from dataclasses import dataclass
from typing import Any, ClassVar, Generator, Optional, Protocol, Union


@dataclass(frozen=True)
class DataRequest:
    kind: ClassVar[str] = ""


@dataclass(frozen=True)
class CodeRequest(DataRequest):
    """Deployed code of ``address`` at the block being decoded."""

    kind: ClassVar[str] = "code"
    address: str = ""


@dataclass(frozen=True)
class StorageRequest(DataRequest):
    """A storage word. Only state decoders answer these; wire decoding never does."""

    kind: ClassVar[str] = "storage"
    address: str = ""
    slot: int = 0


@dataclass(frozen=True)
class Done:
    result: Any


@dataclass(frozen=True)
class Suspended:
    request: DataRequest


Step = Union[Done, Suspended]

DecodeGenerator = Generator[DataRequest, Any, Any]


class DecodeProcess(Protocol):
    def start(self) -> Step:
        ...

    def resume(self, response: Any) -> Step:
        ...


class GeneratorProcess:
    """Adapts a generator that yields requests and returns its result."""

    def __init__(self, generator: DecodeGenerator) -> None:
        self._generator = generator
        self._started = False
        self._finished = False

    def start(self) -> Step:
        if self._started:
            raise RuntimeError("Decode process already started.")
        self._started = True
        return self._advance(None)

    def resume(self, response: Any) -> Step:
        if not self._started:
            raise RuntimeError("Decode process must be started before it is resumed.")
        if self._finished:
            raise RuntimeError("Decode process already finished.")
        return self._advance(response)

    def _advance(self, response: Optional[Any]) -> Step:
        try:
            request = self._generator.send(response)
        except StopIteration as stop:
            self._finished = True
            return Done(stop.value)
        return Suspended(request)
