# core/relay_manager.py
import asyncio
import logging
import threading
import time
from typing import Any, Dict, Optional

from aiohttp import web

from core.config_manager import ConfigManager, get_config
from core.relay import HoldedRelay, create_app
from utils.port_utils import check_port_availability, get_process_using_port

logger = logging.getLogger(__name__)


class RelayManager:
    def __init__(self, config: Optional[ConfigManager] = None):
        self.config = config or get_config()
        self.is_running = False
        self.host = '127.0.0.1'
        self.port = 8787
        self.relay = None
        self.runner = None
        self.site = None
        self.loop = None
        self.thread = None
        self.app_name = "Holded Relay"

        self.last_error_type = None  # 'port', 'startup' or None
        self.last_error_details = None

    def start(self, host: Optional[str] = None, port: Optional[int] = None) -> bool:
        """
        Starts the relay server in a background thread

        Args:
            host: Bind address, defaults to relay.host from the config
            port: Bind port, defaults to relay.port from the config

        Returns:
            bool: True if the server is accepting connections
        """
        if self.is_running:
            logger.warning("⚠️ Relay is already running")
            return False

        relay_config = self.config.get_relay_config()
        self.host = host or relay_config.get('host', '127.0.0.1')
        self.port = port or relay_config.get('port', 8787)
        self.last_error_type = None
        self.last_error_details = None

        port_available, port_message = check_port_availability(self.port, self.host)
        if not port_available:
            logger.error(f"❌ {port_message}")

            process_info = get_process_using_port(self.port)
            if process_info:
                logger.info(
                    f"📌 Process on port {self.port}:\n"
                    f"   PID: {process_info.get('pid')}\n"
                    f"   Name: {process_info.get('name')}\n"
                    f"   User: {process_info.get('username', 'N/A')}"
                )

            self.last_error_type = 'port'
            self.last_error_details = port_message
            return False

        self.thread = threading.Thread(
            target=self._run_server,
            daemon=True
        )
        self.thread.start()

        # Wait for startup (5 seconds max)
        for _ in range(50):
            if self.is_running or self.last_error_type:
                break
            time.sleep(0.1)

        if not self.is_running:
            logger.error("❌ Relay did not start in time")
            self.last_error_type = self.last_error_type or 'startup'
            return False

        upstream = self.relay.base_url if self.relay else 'n/a'
        logger.info(f"✅ Relay listening on http://{self.host}:{self.port} → {upstream}")
        return True

    def _run_server(self):
        """Runs the server on a dedicated event loop"""
        try:
            self.loop = asyncio.new_event_loop()
            asyncio.set_event_loop(self.loop)

            self.loop.run_until_complete(self._start_server())
            if self.is_running:
                self.loop.run_forever()

        except Exception as e:
            logger.error(f"❌ Event loop error: {e}", exc_info=True)
            self.is_running = False
        finally:
            if self.loop:
                self.loop.close()

    async def _start_server(self):
        """Asynchronous server startup"""
        try:
            self.relay = HoldedRelay.from_config(self.config.get_upstream_config())

            app = create_app(self.relay)

            self.runner = web.AppRunner(app, access_log=None)
            await self.runner.setup()

            self.site = web.TCPSite(
                self.runner,
                host=self.host,
                port=self.port,
            )

            await self.site.start()
            self.is_running = True
            logger.info(
                f"📊 Upstream: {self.relay.base_url} "
                f"(perPage={self.relay.per_page}, max_pages={self.relay.max_pages}, "
                f"deadline={self.relay.request_deadline}s)"
            )

        except OSError as e:
            logger.error(f"❌ Failed to start server: {e}")
            self.last_error_type = 'startup'
            self.last_error_details = str(e)
            self.is_running = False

    def stop(self):
        """Stops the relay server"""
        if not self.is_running:
            logger.warning("⚠️ Relay is not running")
            return

        logger.info("🛑 Stopping relay...")
        self.is_running = False

        if self.loop and self.loop.is_running():
            future = asyncio.run_coroutine_threadsafe(self._stop_server(), self.loop)
            try:
                future.result(timeout=5)
            except Exception as e:
                logger.error(f"❌ Error stopping relay: {e}")

            self.loop.call_soon_threadsafe(self.loop.stop)

        if self.thread and self.thread.is_alive():
            self.thread.join(timeout=5)

        if self.relay:
            stats = self.relay.get_full_stats()
            logger.info(
                f"📊 Session statistics:\n"
                f"   Total requests: {stats.get('requests', 0)}\n"
                f"   Successful responses: {stats.get('responses', 0)}\n"
                f"   Upstream calls: {stats.get('upstream_calls', 0)}\n"
                f"   Errors: {stats.get('errors', 0)}"
            )

        logger.info("✅ Relay stopped")

    async def _stop_server(self):
        """Asynchronous server shutdown"""
        if self.site:
            await self.site.stop()
        if self.runner:
            # Runs app.on_cleanup, which closes the upstream session
            await self.runner.cleanup()
        logger.debug("✅ Server stopped")

    def get_status(self) -> Dict[str, Any]:
        """Returns the relay status"""
        status = {
            'running': self.is_running,
            'host': self.host,
            'port': self.port,
            'upstream': self.relay.base_url if self.relay else None,
        }

        if self.last_error_type:
            status['error'] = {
                'type': self.last_error_type,
                'details': self.last_error_details,
            }

        if self.relay and self.is_running:
            status['relay_stats'] = self.relay.get_full_stats()

        return status
