import asyncio
import logging
import platform
import signal
import sys

from sniper_bot.config import Settings, load_strategy_config
from sniper_bot.core.bot import SniperBot
from sniper_bot.exceptions import ConfigurationException
from sniper_bot.logger import setup_logging

logger = logging.getLogger(__name__)


async def main() -> int:
    # Windows UTF-8 fix
    if platform.system() == "Windows":
        sys.stdout.reconfigure(encoding="utf-8")
        sys.stderr.reconfigure(encoding="utf-8")

    settings = Settings.from_env()
    setup_logging(settings)

    try:
        config = load_strategy_config(settings.STRATEGY_CONFIG_PATH)
        bot = SniperBot(settings, config)
    except ConfigurationException as e:
        logger.error("❌ Configuration error: %s", e)
        return 1

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def handle_shutdown(sig):
        print(f"\n🛑 [SHUTDOWN] Received signal {sig}...")
        shutdown_event.set()

    # Add signal handlers (not supported on Windows - use fallback)
    if platform.system() != "Windows":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: handle_shutdown(s))
    else:
        signal.signal(signal.SIGINT, lambda s, f: loop.call_soon_threadsafe(handle_shutdown, s))
        signal.signal(signal.SIGTERM, lambda s, f: loop.call_soon_threadsafe(handle_shutdown, s))

    try:
        await bot.start()
        await shutdown_event.wait()
    finally:
        await bot.stop()
    return 0


def run() -> None:
    print("""
╔══════════════════════════════════════════════════════════════╗
║              🎯 SOLANA TOKEN SNIPER 🎯                        ║
╠══════════════════════════════════════════════════════════════╣
║  Dashboard: python monitor.py                                ║
╚══════════════════════════════════════════════════════════════╝
    """)
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\n👋 Keyboard interrupt - shutting down...")


if __name__ == "__main__":
    run()
