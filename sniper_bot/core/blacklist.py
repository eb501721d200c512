"""
Blacklist Manager Module

Blocks known bad addresses (drainers, rug deployers) permanently, and puts
recently traded assets on a temporary re-entry timeout to avoid churning fees.
"""

import json
import logging
import time
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional, Tuple

logger = logging.getLogger(__name__)


class BlacklistManager:
    def __init__(
        self,
        blocked: Iterable[str] = (),
        path: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._clock = clock
        self.path = Path(path) if path else None
        # Maps address -> expiration_timestamp
        self.timeouts: Dict[str, float] = {}
        # Maps address -> reason
        self.permanent_blocks: Dict[str, str] = {}

        for address in blocked:
            self.permanent_blocks[address] = "configured"
        if self.path:
            self.load()

    def load(self) -> int:
        """Load permanent entries from the blacklist JSON file. Returns how many were added."""
        if not self.path or not self.path.exists():
            return 0
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error(f"Error loading blacklist {self.path}: {e}")
            return 0

        entries = data.get("entries", []) if isinstance(data, dict) else data
        added = 0
        for entry in entries:
            if isinstance(entry, str):
                address, reason = entry, "listed"
            else:
                address, reason = entry.get("address", ""), entry.get("reason", "listed")
            if address and address not in self.permanent_blocks:
                self.permanent_blocks[address] = reason
                added += 1
        logger.info(f"📋 Loaded {added} blacklist entries from {self.path}")
        return added

    def add_timeout(self, address: str, duration_minutes: float = 60.0):
        """Add a temporary timeout for an address."""
        if duration_minutes <= 0:
            return
        self.timeouts[address] = self._clock() + (duration_minutes * 60)
        logger.info(f"🚫 Added timeout for {address[:8]}... ({duration_minutes}m)")

    def add_permanent_block(self, address: str, reason: str = "manual"):
        """Permanently block an address."""
        self.permanent_blocks[address] = reason
        logger.info(f"🛑 Permanently blocked {address[:8]}... ({reason})")

    def remove(self, address: str) -> bool:
        removed = self.permanent_blocks.pop(address, None) is not None
        removed = self.timeouts.pop(address, None) is not None or removed
        if removed:
            logger.info(f"✅ Removed {address[:8]}... from blacklist")
        return removed

    def check(self, address: str) -> Tuple[bool, str]:
        """(blocked, reason)"""
        if address in self.permanent_blocks:
            return True, f"blacklisted: {self.permanent_blocks[address]}"

        expires = self.timeouts.get(address)
        if expires is not None:
            if self._clock() < expires:
                return True, "re-entry timeout"
            del self.timeouts[address]

        return False, ""

    def is_blocked(self, address: str) -> bool:
        """Check if an address is currently blocked."""
        return self.check(address)[0]

    def cleanup(self):
        """Remove expired timeouts."""
        now = self._clock()
        expired = [k for k, v in self.timeouts.items() if v < now]
        for k in expired:
            del self.timeouts[k]
