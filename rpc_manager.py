import re
import time
import random
import logging
from typing import Callable, List, Optional, TypeVar

from web3 import Web3

logger = logging.getLogger("RPCManager")

T = TypeVar("T")

# status / error codes only count when not embedded in hex data or longer numbers
STANDALONE_CODE = re.compile(r"(?<![0-9a-fx-])(-?\d{3,5})(?![0-9a-f])")


class SmartSyncRPCManager:
    """
    Round-Robin Sync RPC Manager:
    - Rotates through the primary and fallback RPC nodes on rate limit / quota errors
      and on hard connection errors.
    - Gives up after `max_attempts` rotations and re-raises the last error.
    """
    RATE_LIMIT_STATUSES = {403, 429}
    RATE_LIMIT_RPC_CODES = {-32001, -32005}
    RATE_LIMIT_KEYWORDS = ["too many requests", "forbidden", "timeout", "timed out", "quota"]
    HARD_ERROR_KEYWORDS = ["serverdisconnected", "connectionerror", "connection refused",
                           "cannot connect", "server disconnected", "connectionreseterror",
                           "connection aborted", "oserror", "gaierror", "remotedisconnected",
                           "max retries exceeded"]

    def __init__(self, primary_url: str, fallback_urls: Optional[List[str]] = None,
                 max_attempts: int = 3, timeout: int = 60, sleep: Callable[[float], None] = time.sleep):
        self.rpc_urls = [primary_url] + [url for url in (fallback_urls or []) if url != primary_url]
        self.current_index = 0
        self.active_url = self.rpc_urls[self.current_index]
        self.max_attempts = max_attempts
        self.timeout = timeout
        self._sleep = sleep
        self.w3 = self._connect(self.active_url)
        logger.info(f"🟢 Smart Sync RPC Manager: Starting with {self.active_url[:50]}... ({len(self.rpc_urls)} nodes)")

    def _connect(self, url: str) -> Web3:
        return Web3(Web3.HTTPProvider(url, request_kwargs={'timeout': self.timeout}))

    def rotate(self):
        """Immediately rotate to the next node and sleep briefly."""
        self.current_index = (self.current_index + 1) % len(self.rpc_urls)
        self.active_url = self.rpc_urls[self.current_index]
        self.w3 = self._connect(self.active_url)

        cooldown = random.uniform(1.0, 2.0)
        logger.warning(f"⏳ Rotating to {self.active_url[:50]}... (Sleep {cooldown:.1f}s)")
        self._sleep(cooldown)

    def is_rate_limit_error(self, error) -> bool:
        status = getattr(getattr(error, "response", None), "status_code", None)
        if isinstance(status, int):
            return status in self.RATE_LIMIT_STATUSES

        rpc_error = error.args[0] if error.args and isinstance(error.args[0], dict) else {}
        if isinstance(rpc_error.get("code"), int):
            return rpc_error["code"] in self.RATE_LIMIT_RPC_CODES

        err_str = str(error).lower()
        if any(k in err_str for k in self.RATE_LIMIT_KEYWORDS):
            return True
        return any(int(code) in self.RATE_LIMIT_STATUSES | self.RATE_LIMIT_RPC_CODES
                   for code in STANDALONE_CODE.findall(err_str))

    def is_hard_error(self, error) -> bool:
        err_str = f"{type(error).__name__} {error}".lower()
        return any(k in err_str for k in self.HARD_ERROR_KEYWORDS)

    def call(self, func: Callable[[Web3], T]) -> T:
        """Runs `func` against the active Web3 instance, rotating on transient RPC errors.

        `func` receives the Web3 instance so that the call is re-bound to the new node
        after a rotation. Anything that is not a rate limit or a connection error is
        raised unchanged.
        """
        attempt = 0
        while True:
            try:
                return func(self.w3)
            except Exception as e:
                attempt += 1
                if attempt >= self.max_attempts:
                    raise
                if self.is_rate_limit_error(e):
                    logger.warning(f"🐌 Rate limited on {self.active_url[:50]}: {e}")
                    self.rotate()
                elif self.is_hard_error(e):
                    logger.error(f"💥 Hard RPC error: {e}. Rotating...")
                    self.rotate()
                else:
                    raise
