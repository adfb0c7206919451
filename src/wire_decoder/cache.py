import logging
import threading
from concurrent.futures import Future
from typing import Dict, Optional, Tuple

from .conversion import BlockId, normalize_address, parse_block_number
from .rpc_client import ChainTransport

logger = logging.getLogger(__name__)

CacheKey = Tuple[BlockId, str]


class CodeCache:
    """
    In-memory cache of deployed bytecode keyed by (block, address).

    Entries are never evicted: the code of an address at a given block does not
    change. A missing block (pending transaction) shares the "latest" entry.
    Tag keys such as "latest" are memoized too and go stale if the contract
    self-destructs or is redeployed while the cache is alive.

    Concurrent lookups of a missing key share one transport call; a failed
    fetch is dropped so a later lookup can try again.
    """

    def __init__(self, transport: ChainTransport) -> None:
        self._transport = transport
        self._entries: Dict[CacheKey, "Future[bytes]"] = {}
        self._lock = threading.Lock()
        self._stats = {"hits": 0, "misses": 0}

    def _key(self, address: str, block: Optional[BlockId]) -> CacheKey:
        parsed = parse_block_number(block)
        return ("latest" if parsed is None else parsed), normalize_address(address)

    def get(self, address: str, block: Optional[BlockId]) -> bytes:
        key = self._key(address, block)
        with self._lock:
            entry = self._entries.get(key)
            owner = entry is None
            if owner:
                entry = Future()
                self._entries[key] = entry
                self._stats["misses"] += 1
            else:
                self._stats["hits"] += 1

        if not owner:
            logger.debug(f"Code cache HIT for {key[1]} at block {key[0]}")
            return entry.result()

        logger.debug(f"Code cache MISS for {key[1]} at block {key[0]}")
        try:
            code = self._transport.get_code(key[1], key[0])
        except BaseException as exc:
            with self._lock:
                del self._entries[key]
            entry.set_exception(exc)
            raise
        entry.set_result(code)
        return code

    def has(self, address: str, block: Optional[BlockId]) -> bool:
        key = self._key(address, block)
        with self._lock:
            entry = self._entries.get(key)
        return entry is not None and entry.done() and entry.exception() is None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_stats(self) -> Dict[str, int]:
        """Returns a copy of the hit/miss counters."""
        with self._lock:
            return dict(self._stats)
