import os
from dataclasses import dataclass

DEFAULT_TIMEOUT = 10
DEFAULT_RETRIES = 1
DEFAULT_BACKOFF_SECONDS = 0.5
DEFAULT_WORKERS = 8
DEFAULT_LOG_LEVEL = "WARNING"

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


@dataclass
class DecoderConfig:
    rpc_url: str
    request_timeout: int = DEFAULT_TIMEOUT
    max_retries: int = DEFAULT_RETRIES
    backoff_seconds: float = DEFAULT_BACKOFF_SECONDS
    max_workers: int = DEFAULT_WORKERS
    log_level: str = DEFAULT_LOG_LEVEL


def _int_env(name: str, default: int, minimum: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got '{raw}'.") from exc
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}.")
    return value


def load_config() -> DecoderConfig:
    """Load configuration from environment variables."""
    rpc_url = (os.getenv("RPC_URL") or "").strip()
    if not rpc_url:
        raise ValueError("RPC_URL is required but not set.")

    timeout = _int_env("REQUEST_TIMEOUT", DEFAULT_TIMEOUT, 1)
    max_retries = _int_env("REQUEST_RETRIES", DEFAULT_RETRIES, 1)
    max_workers = _int_env("DECODE_WORKERS", DEFAULT_WORKERS, 1)
    backoff = float(os.getenv("REQUEST_BACKOFF_SECONDS", str(DEFAULT_BACKOFF_SECONDS)))

    log_level = os.getenv("LOG_LEVEL", DEFAULT_LOG_LEVEL).strip().upper()
    if log_level not in _LOG_LEVELS:
        allowed = ", ".join(sorted(_LOG_LEVELS))
        raise ValueError(f"Unknown LOG_LEVEL '{log_level}'. Supported: {allowed}.")

    return DecoderConfig(
        rpc_url=rpc_url,
        request_timeout=timeout,
        max_retries=max_retries,
        backoff_seconds=backoff,
        max_workers=max_workers,
        log_level=log_level,
    )
