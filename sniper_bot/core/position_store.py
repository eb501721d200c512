from __future__ import annotations

import json
import logging
import math
import time
from dataclasses import asdict
from pathlib import Path
from typing import Any, Callable

from sniper_bot.constants import AMOUNT_REL_TOLERANCE
from sniper_bot.core.interfaces import BalanceProvider
from sniper_bot.core.models import CircuitBreakerState, LifecycleState, Position, PositionSummary
from sniper_bot.core.tier_exit import transition


class PositionStore:
    """
    JSON snapshot of open and finished positions.

    Written after every state change, read by monitor.py and on restart.
    """

    def __init__(
        self,
        snapshot_path: str | Path,
        clock: Callable[[], float] = time.time,
        breaker_status: Callable[[], CircuitBreakerState] | None = None,
    ) -> None:
        self.logger = logging.getLogger("sniper_bot.positions")
        self.snapshot_path = Path(snapshot_path)
        self._clock = clock
        self.breaker_status = breaker_status

    def save(self, positions: list[Position], history: list[PositionSummary]) -> None:
        payload: dict[str, Any] = {
            "ts": self._clock(),
            "open_positions": [_position_to_dict(p) for p in positions],
            "history": [_summary_to_dict(s) for s in history],
        }
        if self.breaker_status is not None:
            payload["circuit_breaker"] = asdict(self.breaker_status())
        try:
            self._write_snapshot(payload)
        except OSError as e:
            self.logger.error("Failed to write positions snapshot: %s", e)

    def _write_snapshot(self, payload: dict) -> None:
        self.snapshot_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.snapshot_path.with_suffix(self.snapshot_path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        tmp_path.replace(self.snapshot_path)

    def load_positions(self) -> list[Position]:
        """Open positions from the snapshot. Empty list if missing or unreadable."""
        if not self.snapshot_path.exists():
            self.logger.info("No positions snapshot found, starting fresh")
            return []

        try:
            data = json.loads(self.snapshot_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            self.logger.error("Failed to load positions snapshot: %s", e)
            return []

        positions: list[Position] = []
        for pos_data in data.get("open_positions", []):
            try:
                position = _position_from_dict(pos_data)
            except (KeyError, TypeError, ValueError) as e:
                self.logger.warning("Failed to restore position %s: %s", pos_data.get("asset_id", "?"), e)
                continue
            if position.state.is_terminal:
                continue
            positions.append(position)
            self.logger.info(
                "Restored position: %s (%s) remaining=%.6f tiers=%s",
                position.symbol or "?", position.asset_id[:8], position.remaining_amount, position.tiers_completed,
            )

        self.logger.info("Restored %d positions from snapshot", len(positions))
        return positions

    async def reconcile(
        self,
        positions: list[Position],
        balance_provider: BalanceProvider | None,
        dust_amount: float = 0.0,
    ) -> list[Position]:
        """
        Align restored positions with the wallet.

        On-chain balance wins over the snapshot. A position whose balance
        differs is flagged "mismatch", one holding nothing is closed, one
        that cannot be checked is kept and flagged "unverified".
        """
        for position in positions:
            if balance_provider is None:
                position.reconcile_status = "unverified"
                continue
            try:
                balance = await balance_provider.get_balance(position.asset_id)
            except Exception as e:
                self.logger.warning("Balance check failed for %s: %s", position.asset_id[:8], e)
                balance = None
            if balance is None:
                position.reconcile_status = "unverified"
                self.logger.warning("⚠️ [%s] Balance unknown, resuming unverified", position.asset_id[:8])
                continue

            held = min(max(balance, 0.0), position.entry_amount)
            if math.isclose(held, position.remaining_amount, rel_tol=AMOUNT_REL_TOLERANCE, abs_tol=AMOUNT_REL_TOLERANCE):
                position.reconcile_status = "verified"
            else:
                self.logger.warning(
                    "⚠️ [%s] Balance mismatch: snapshot=%.6f on-chain=%.6f",
                    position.asset_id[:8], position.remaining_amount, balance,
                )
                position.reconcile_status = "mismatch"
                position.remaining_amount = held
                position.sold_amount = position.entry_amount - held

            if held <= dust_amount:
                transition(position, LifecycleState.CLOSED, "reconciled_empty")
                position.closed_at = self._clock()
                self.logger.info("[%s] Nothing held on-chain, closing", position.asset_id[:8])
        return positions

    def clear_snapshot(self) -> None:
        if self.snapshot_path.exists():
            self._write_snapshot({"ts": 0, "open_positions": [], "history": []})
            self.logger.info("Positions snapshot cleared")


def _position_to_dict(position: Position) -> dict[str, Any]:
    data = asdict(position)
    data["state"] = position.state.value
    data["multiplier"] = position.multiplier(position.last_price)
    return data


def _summary_to_dict(summary: PositionSummary) -> dict[str, Any]:
    data = asdict(summary)
    data["state"] = summary.state.value
    data["tiers_completed"] = list(summary.tiers_completed)
    return data


def _position_from_dict(data: dict[str, Any]) -> Position:
    known = {k: v for k, v in data.items() if k in Position.__dataclass_fields__}
    known["state"] = LifecycleState(known.get("state", LifecycleState.MONITORING.value))
    known["tiers_completed"] = [int(i) for i in known.get("tiers_completed", [])]
    return Position(**known)
