import logging
import threading
import time
from typing import Any, Dict, List, Optional, Protocol

import requests

from .conversion import BlockId, format_block_tag, normalize_address, to_bytes
from .errors import TransportError

logger = logging.getLogger(__name__)


class ChainTransport(Protocol):
    """What the decoder needs from the chain."""

    def get_code(self, address: str, block: Optional[BlockId]) -> bytes:
        ...

    def get_past_logs(
        self,
        address: Optional[str] = None,
        from_block: Optional[BlockId] = None,
        to_block: Optional[BlockId] = None,
    ) -> List[Dict[str, Any]]:
        ...


class RpcClient:
    """Minimal JSON-RPC 2.0 client for EVM nodes (HTTP POST)."""

    def __init__(
        self,
        rpc_url: str,
        timeout: int = 10,
        max_retries: int = 1,
        backoff_seconds: float = 0.5,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        url = (rpc_url or "").strip()
        if not url:
            raise ValueError("rpc_url must be a non-empty string.")

        self.rpc_url = url
        self.timeout = timeout
        self.max_retries = max(1, int(max_retries))
        self.backoff_seconds = float(backoff_seconds)
        self.session = requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        if headers:
            self.session.headers.update(dict(headers))
        self._next_id = 1
        self._id_lock = threading.Lock()

    def _take_id(self) -> int:
        with self._id_lock:
            request_id = self._next_id
            self._next_id += 1
        return request_id

    def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        if not isinstance(method, str) or not method.strip():
            raise ValueError("method must be a non-empty string.")
        if params is None:
            params = []
        if not isinstance(params, list):
            raise ValueError("params must be a list.")

        payload = {
            "jsonrpc": "2.0",
            "id": self._take_id(),
            "method": method,
            "params": params,
        }
        logger.debug(f"RPC {method} {params}")

        for attempt in range(1, self.max_retries + 1):
            try:
                response = self.session.post(
                    self.rpc_url,
                    json=payload,
                    timeout=self.timeout,
                )
                if response.status_code in {429} or response.status_code >= 500:
                    if attempt < self.max_retries:
                        time.sleep(self.backoff_seconds * attempt)
                        continue

                response.raise_for_status()
                data = response.json()
            except (requests.RequestException, ValueError) as exc:
                if attempt < self.max_retries:
                    time.sleep(self.backoff_seconds * attempt)
                    continue
                raise TransportError(f"RPC {method} failed: {exc}", method=method) from exc

            if not isinstance(data, dict):
                raise TransportError("Unexpected JSON-RPC response (non-object).", method=method)

            error_obj = data.get("error")
            if isinstance(error_obj, dict):
                code = error_obj.get("code")
                message = error_obj.get("message")
                err_data = error_obj.get("data")
                parts: list[str] = []
                if code is not None:
                    parts.append(f"code {code}")
                if message:
                    parts.append(str(message))
                if err_data:
                    parts.append(str(err_data))
                detail = ": ".join(parts) if parts else "unknown error"
                raise TransportError(f"RPC error: {detail}.", method=method)

            if "result" not in data:
                raise TransportError("Unexpected JSON-RPC response (missing result).", method=method)
            return data.get("result")

        raise TransportError(f"RPC {method} failed without a response.", method=method)

    def get_block_number(self) -> int:
        result = self.call("eth_blockNumber", [])
        if not isinstance(result, str) or not result.startswith("0x"):
            raise TransportError("eth_blockNumber returned unexpected result.", method="eth_blockNumber")
        return int(result, 16)

    def get_code(self, address: str, block: Optional[BlockId] = None) -> bytes:
        result = self.call("eth_getCode", [normalize_address(address), format_block_tag(block)])
        if not isinstance(result, str):
            raise TransportError("eth_getCode returned unexpected result.", method="eth_getCode")
        try:
            return to_bytes(result)
        except ValueError as exc:
            raise TransportError(f"eth_getCode returned malformed code: {exc}", method="eth_getCode") from exc

    def get_past_logs(
        self,
        address: Optional[str] = None,
        from_block: Optional[BlockId] = None,
        to_block: Optional[BlockId] = None,
    ) -> List[Dict[str, Any]]:
        log_filter: Dict[str, Any] = {
            "fromBlock": format_block_tag(from_block),
            "toBlock": format_block_tag(to_block),
        }
        if address is not None:
            log_filter["address"] = normalize_address(address)

        result = self.call("eth_getLogs", [log_filter])
        if not isinstance(result, list):
            raise TransportError("eth_getLogs returned unexpected result.", method="eth_getLogs")
        return [entry for entry in result if isinstance(entry, dict)]

    def get_transaction_by_hash(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        result = self.call("eth_getTransactionByHash", [tx_hash])
        if result is not None and not isinstance(result, dict):
            raise TransportError(
                "eth_getTransactionByHash returned unexpected result.",
                method="eth_getTransactionByHash",
            )
        return result
