import json
import os
import time
from datetime import datetime
from pathlib import Path

from rich import box
from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

SNAPSHOT_PATH = Path(os.getenv("POSITION_SNAPSHOT_PATH", "logs/positions.json"))


def get_positions_table(data):
    table = Table(box=box.ROUNDED, expand=True)
    table.add_column("Symbol", style="cyan", no_wrap=True)
    table.add_column("Venue")
    table.add_column("State", style="magenta")
    table.add_column("Remaining", justify="right")
    table.add_column("Entry", justify="right")
    table.add_column("Current", justify="right")
    table.add_column("Mult", justify="right")
    table.add_column("Tiers", justify="right")
    table.add_column("Realized", justify="right")
    table.add_column("Age", justify="right")

    positions = data.get("open_positions", [])
    now = data.get("ts", time.time())

    if not positions:
        table.add_row(*["-"] * 10)
        return table

    for p in positions:
        sym = p.get("symbol") or p.get("asset_id", "???")[:8]
        entry = p.get("entry_price") or 0.0
        curr = p.get("last_price") or 0.0
        mult = p.get("multiplier") or 0.0
        age_sec = int(now - p.get("created_at", now))

        if mult >= 2:
            mult_style = "bold green"
        elif mult >= 1:
            mult_style = "green"
        else:
            mult_style = "red"

        flag = " ⚠️" if p.get("reconcile_status") == "mismatch" else ""
        table.add_row(
            f"{sym}{flag}",
            p.get("venue", "?"),
            p.get("state", "?"),
            f"{p.get('remaining_amount', 0.0):.2f}",
            f"{entry:.10f}",
            f"{curr:.10f}",
            f"[{mult_style}]{mult:.2f}x[/{mult_style}]",
            str(len(p.get("tiers_completed", []))),
            f"{p.get('realized_quote', 0.0):.4f}",
            f"{age_sec}s",
        )
    return table


def get_history_table(data, limit=8):
    table = Table(box=box.SIMPLE, expand=True)
    table.add_column("Symbol", style="cyan")
    table.add_column("State")
    table.add_column("Reason")
    table.add_column("Realized", justify="right")

    for s in list(data.get("history", []))[-limit:][::-1]:
        state = s.get("state", "?")
        style = "green" if state == "CLOSED" else "yellow"
        table.add_row(
            s.get("symbol") or s.get("asset_id", "???")[:8],
            f"[{style}]{state}[/{style}]",
            s.get("close_reason", ""),
            f"{s.get('realized_quote', 0.0):.4f}",
        )
    return table


def get_breaker_panel(data):
    cb = data.get("circuit_breaker")
    if not cb:
        return Panel("No breaker data", title="Circuit Breaker", border_style="dim")

    if cb.get("is_half_open"):
        state, style = "🟡 HALF-OPEN", "yellow"
    elif cb.get("is_open"):
        state, style = "🔴 OPEN", "red"
    else:
        state, style = "🟢 CLOSED", "green"

    lines = [
        f"[bold]{state}[/bold]",
        f"Daily loss: {cb.get('daily_loss', 0.0):.4f} / {cb.get('daily_loss_threshold', 0.0):.4f} SOL",
        f"Trades today: {cb.get('daily_trade_count', 0)}",
        f"Failures: {cb.get('consecutive_failures', 0)} / {cb.get('error_threshold', 0)}",
    ]
    if cb.get("is_open"):
        lines.append(f"Reason: {cb.get('open_reason', '')}")
        cooldown = cb.get("cooldown_until")
        if cooldown:
            lines.append(f"Cooldown until: {datetime.fromtimestamp(cooldown).strftime('%H:%M:%S')}")
    return Panel("\n".join(lines), title="Circuit Breaker", border_style=style)


def make_layout():
    layout = Layout()
    layout.split(
        Layout(name="header", size=3),
        Layout(name="main"),
        Layout(name="bottom", size=12),
        Layout(name="footer", size=3),
    )
    layout["bottom"].split_row(Layout(name="breaker", ratio=1), Layout(name="history", ratio=2))
    return layout


def main():
    console = Console()
    layout = make_layout()

    layout["header"].update(Panel("🎯 SOLANA SNIPER - LIVE MONITOR", style="bold white on blue"))
    layout["footer"].update(Panel("Press Ctrl+C to exit", style="dim"))

    with Live(layout, console=console, refresh_per_second=1, screen=True):
        while True:
            try:
                if SNAPSHOT_PATH.exists():
                    try:
                        text = SNAPSHOT_PATH.read_text(encoding="utf-8")
                        if text.strip():
                            data = json.loads(text)
                            ts = data.get("ts", 0)
                            lag = time.time() - ts

                            status = f"Last Update: {datetime.fromtimestamp(ts).strftime('%H:%M:%S')} (Lag: {lag:.1f}s)"
                            if lag > 30:
                                status += " [bold red]⚠️  STALE[/bold red]"

                            layout["header"].update(Panel(f"🎯 SNIPER | {status}", style="bold white on blue"))
                            layout["main"].update(
                                Panel(get_positions_table(data), title="Open Positions", border_style="green")
                            )
                            layout["breaker"].update(get_breaker_panel(data))
                            layout["history"].update(
                                Panel(get_history_table(data), title="Recently Finished", border_style="blue")
                            )
                    except json.JSONDecodeError:
                        pass  # writing
                else:
                    layout["main"].update(Panel("Waiting for bot data...", title="Status", border_style="yellow"))

                time.sleep(1)
            except KeyboardInterrupt:
                break


if __name__ == "__main__":
    main()
