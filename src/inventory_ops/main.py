"""
Entry point for the Inventory Operations Agent.

Wires the store, the ledger and operational API clients, alerts and the
supervisor loop, serves the review dashboard from a background thread and
runs until SIGINT or SIGTERM.

Usage:
    python -m inventory_ops.main
    python -m inventory_ops.main --no-dashboard
    python -m inventory_ops.main --no-auto-healing
    python -m inventory_ops.main --apply-schema      # Create agent tables first

Environment Variables:
    DATABASE_URL              Inventory PostgreSQL database (required)
    BLOCKCHAIN_RPC_URL        Ledger node RPC endpoint
    BLOCKCHAIN_PRIVATE_KEY    Signing key for transaction rollbacks
    OPERATIONS_API_URL        Operational API (restart, scale, reconnect, cleanup)
    OPERATIONS_API_KEY        Bearer token for the operational API
    API_HEALTH_URL            Liveness endpoint of the inventory API
    REDIS_URL                 Redis to probe each health cycle (unset: not probed)
    TELEGRAM_BOT_TOKEN        Bot token used for operator alerts
    TELEGRAM_CHAT_ID          Chat that receives operator alerts
    DASHBOARD_ENABLED         "false" disables the dashboard
    DASHBOARD_HOST            Dashboard bind address (default: 127.0.0.1)
    DASHBOARD_PORT            Dashboard port (default: 9050)
    DASHBOARD_API_KEY         Require this key on dashboard requests
    LOG_LEVEL                 DEBUG, INFO, WARNING or ERROR
    OPS_<GROUP>_<OPTION>      Any AgentConfig group option, e.g.
                              OPS_INTERVAL_SYSTEM_HEALTH=15
"""

from __future__ import annotations

import argparse
import asyncio
import atexit
import fcntl
import logging
import os
import signal
import sys
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

# Logging is configured before the package modules create their loggers
logging.basicConfig(
    level=getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("inventory_ops")

from werkzeug.serving import BaseWSGIServer, make_server  # noqa: E402

from inventory_ops.clients import LedgerClient, OperationsClient  # noqa: E402
from inventory_ops.config import AgentConfig  # noqa: E402
from inventory_ops.core import SupervisorLoop  # noqa: E402
from inventory_ops.monitoring import AlertManager, Dashboard  # noqa: E402
from inventory_ops.storage import Database, DatabaseConfig, Store  # noqa: E402

DEFAULT_PID_FILE = "/tmp/inventory-ops.pid"


class AlreadyRunningError(Exception):
    """Another agent holds the PID file lock."""


@contextmanager
def singleton_lock(pid_file: str = DEFAULT_PID_FILE) -> Iterator[None]:
    """
    Hold an exclusive flock on pid_file for the duration of the block.

    Raises:
        AlreadyRunningError: If the lock is held elsewhere
    """
    path = Path(pid_file)
    holder = path.read_text().strip() if path.exists() else ""

    # Append mode: the current holder's PID survives a failed attempt
    handle = path.open("a+")
    try:
        fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        handle.close()
        raise AlreadyRunningError(f"Agent already running (PID {holder or 'unknown'})")

    handle.seek(0)
    handle.truncate()
    handle.write(f"{os.getpid()}\n")
    handle.flush()

    def release() -> None:
        if handle.closed:
            return
        try:
            fcntl.flock(handle, fcntl.LOCK_UN)
        finally:
            handle.close()
            path.unlink(missing_ok=True)

    atexit.register(release)
    logger.info(f"Holding {pid_file} (PID {os.getpid()})")
    try:
        yield
    finally:
        release()
        atexit.unregister(release)


class DashboardThread:
    """Serves the dashboard WSGI app with werkzeug on a daemon thread."""

    def __init__(self, dashboard: Dashboard, host: str, port: int) -> None:
        self._dashboard = dashboard
        self._host = host
        self._port = port
        self._server: Optional[BaseWSGIServer] = None
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        # Bind here so a busy port is reported before the thread starts
        self._server = make_server(
            self._host, self._port, self._dashboard.create_app(), threaded=True
        )
        self._thread = threading.Thread(
            target=self._server.serve_forever, name="dashboard", daemon=True
        )
        self._thread.start()
        logger.info(f"Dashboard: http://{self._host}:{self._port}")

    def stop(self, timeout: float = 5.0) -> None:
        if self._server is not None:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Dashboard thread still alive after shutdown")
            self._thread = None


class Agent:
    """
    Owns every long-lived resource and tears them down in reverse order.

    Usage:
        agent = Agent(AgentConfig.from_env())
        await agent.start()  # returns after SIGINT/SIGTERM
    """

    def __init__(self, config: AgentConfig, apply_schema: bool = False):
        self.config = config
        self._apply_schema = apply_schema
        self._running = False
        self._stop_requested = asyncio.Event()

        self._db: Optional[Database] = None
        self._ops: Optional[OperationsClient] = None
        self._alerts: Optional[AlertManager] = None
        self.supervisor: Optional[SupervisorLoop] = None
        self._dashboard: Optional[DashboardThread] = None

    async def start(self) -> None:
        self._running = True
        self._stop_requested.clear()
        self._install_signal_handlers()

        try:
            await self._wire()
            logger.info("Agent running (Ctrl+C to stop)")
            await self._stop_requested.wait()
        except Exception:
            logger.exception("Agent failed during start-up or run")
            raise
        finally:
            await self.stop()

    async def _wire(self) -> None:
        store = await self._init_database()
        ledger = await self._init_ledger()
        self._ops = OperationsClient(
            self.config.operations_api_url, api_key=self.config.operations_api_key
        )
        self._alerts = AlertManager(
            telegram_bot_token=self.config.telegram_bot_token,
            telegram_chat_id=self.config.telegram_chat_id,
        )
        logger.info(f"Alerts: {'Telegram' if self._alerts.enabled else 'log only'}")

        self.supervisor = SupervisorLoop(
            self.config, store=store, ledger=ledger, ops=self._ops, alerts=self._alerts
        )
        await self.supervisor.start()

        if not self.config.dashboard_enabled:
            logger.info("Dashboard: off")
            return
        self._dashboard = DashboardThread(
            Dashboard(self.supervisor, event_loop=asyncio.get_running_loop()),
            self.config.dashboard_host,
            self.config.dashboard_port,
        )
        try:
            self._dashboard.start()
        except OSError as e:
            # The agent keeps running without its review surface
            logger.error(f"Dashboard not started: {e}")
            self._dashboard = None

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self._stop_requested.set()
        logger.info("Stopping agent...")

        if self._dashboard is not None:
            self._dashboard.stop()
            self._dashboard = None

        if self.supervisor is not None:
            try:
                await self.supervisor.stop()
            except Exception as e:
                logger.warning(f"Supervisor stop raised: {e}")

        if self._alerts is not None:
            await self._alerts.drain()

        for name, closer in (("operations client", self._ops), ("database", self._db)):
            if closer is None:
                continue
            try:
                await closer.close()
            except Exception as e:
                logger.warning(f"Closing {name} raised: {e}")

        logger.info("Agent stopped")

    async def _init_database(self) -> Store:
        if not self.config.database_url:
            raise ValueError("DATABASE_URL is not set")

        self._db = Database(DatabaseConfig(url=self.config.database_url))
        await self._db.initialize()
        if self._apply_schema:
            await self._db.apply_schema()
        if not await self._db.health_check():
            raise RuntimeError("Database is not answering queries")
        logger.info("Database: ready")
        return Store(self._db)

    async def _init_ledger(self) -> LedgerClient:
        ledger = LedgerClient(self.config.ledger_rpc_url, private_key=self.config.ledger_private_key)
        # An unreachable node is monitored, not fatal
        if await ledger.is_connected():
            logger.info(f"Ledger: connected ({self.config.ledger_rpc_url})")
        else:
            logger.warning(f"Ledger: unreachable at {self.config.ledger_rpc_url}")
        return ledger

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self._on_signal, signum)
            except NotImplementedError:
                return  # not supported on this platform

    def _on_signal(self, signum: int) -> None:
        logger.info(f"{signal.Signals(signum).name} received")
        self._stop_requested.set()


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="inventory-ops",
        description="Inventory Operations Agent",
        epilog=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--no-dashboard", action="store_true", help="Do not serve the review dashboard")
    parser.add_argument(
        "--no-auto-healing",
        action="store_true",
        help="Detect and alert on failures without remediating them",
    )
    parser.add_argument("--apply-schema", action="store_true", help="Create the agent tables first")
    parser.add_argument(
        "--pid-file",
        default=DEFAULT_PID_FILE,
        help=f"Lock file that keeps the agent single-instance (default: {DEFAULT_PID_FILE})",
    )
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser.parse_args(argv)


async def main_async(args: argparse.Namespace) -> int:
    try:
        config = AgentConfig.from_env()
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    config.dashboard_enabled = config.dashboard_enabled and not args.no_dashboard
    if args.no_auto_healing:
        config.auto_healing.enabled = False

    if not config.database_url:
        logger.error("DATABASE_URL is not set")
        return 1

    try:
        await Agent(config, apply_schema=args.apply_schema).start()
    except Exception as e:
        logger.error(f"Agent exited with error: {e}")
        return 1
    return 0


def main(argv: Optional[list] = None) -> int:
    args = parse_args(argv)
    if args.log_level:
        logging.getLogger().setLevel(args.log_level)

    try:
        with singleton_lock(args.pid_file):
            try:
                return asyncio.run(main_async(args))
            except KeyboardInterrupt:
                return 0
    except AlreadyRunningError as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
