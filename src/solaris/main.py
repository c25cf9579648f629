"""Solaris application entry point and lifecycle orchestrator.

Startup sequence:
  config → remote store → ingests → guard → policy → writer →
  forecast cache → automation controller → device driver →
  stream tasks → forecast task → operator API
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import sys
from pathlib import Path

from solaris import __version__
from solaris.config.manager import ConfigManager
from solaris.config.schema import AppConfig
from solaris.errors import ForecastUnavailableError, RemoteStoreError
from solaris.logging.structured import setup_logging

logger = logging.getLogger(__name__)


class Application:
    """Main application lifecycle manager.

    Wires all modules together and manages startup/shutdown ordering.
    """

    def __init__(self, config: AppConfig, config_manager: ConfigManager | None = None) -> None:
        self.config = config
        self.config_manager = config_manager
        self._running = False
        self._tasks: list[asyncio.Task] = []
        self._stop_event = asyncio.Event()

        # References held for cleanup
        self.store = None
        self.controller = None
        self._forecast_provider = None
        self._device_driver = None
        self._device_mqtt = None
        self._server = None

    def build(self) -> None:
        """Construct all components without starting any I/O."""
        from solaris.control.automation import AutomationController
        from solaris.control.policy import AllocationPolicy
        from solaris.control.threshold import ThresholdGuard
        from solaris.forecast.cache import ForecastCache
        from solaris.relays.ingest import RelayStateIngest
        from solaris.relays.writer import ReconciliationWriter
        from solaris.telemetry.ingest import TelemetryIngest

        cfg = self.config

        # ── 1. Remote store ──────────────────────────────────
        self.store = self._create_store()

        # ── 2. Ingest + guard + policy ───────────────────────
        relay_ingest = RelayStateIngest(cfg.relay_ids)
        telemetry_ingest = TelemetryIngest()
        guard = ThresholdGuard(cfg.automation.threshold_pct)
        policy = AllocationPolicy(cfg.policy, cfg.relays)

        # ── 3. Writer ────────────────────────────────────────
        writer = ReconciliationWriter(
            store=self.store,
            ingest=relay_ingest,
            name_for=cfg.relay_name,
            write_timeout_seconds=cfg.store.write_timeout_seconds,
            history_size=cfg.automation.command_history_size,
        )

        # ── 4. Forecast ──────────────────────────────────────
        self._forecast_provider = self._create_forecast_provider()
        forecasts = ForecastCache(self._forecast_provider)

        # ── 5. Automation controller ─────────────────────────
        self.controller = AutomationController(
            telemetry=telemetry_ingest,
            relays=relay_ingest,
            guard=guard,
            policy=policy,
            writer=writer,
            forecasts=forecasts,
            preferences=cfg.policy.preferences,
        )

        # ── 6. Device pin driver ─────────────────────────────
        if cfg.device.enabled:
            from solaris.device.driver import DevicePinDriver, MQTTPinWriter
            from solaris.mqtt.client import MQTTClient

            self._device_mqtt = MQTTClient(cfg.store.mqtt, reconnect_on_publish=True)
            pin_writer = MQTTPinWriter(self._device_mqtt.publish, cfg.store.mqtt.topic_prefix)
            self._device_driver = DevicePinDriver(pin_writer, active_low=cfg.device.active_low)
            relay_ingest.add_listener(self._device_driver.on_observed)

    def _create_store(self):
        store_cfg = self.config.store
        if store_cfg.backend == "mqtt":
            from solaris.store.mqtt import MQTTStore

            logger.info("Remote store: MQTT at %s:%d", store_cfg.mqtt.broker_host, store_cfg.mqtt.broker_port)
            return MQTTStore(store_cfg.mqtt)

        from solaris.store.firebase import FirebaseStore

        logger.info("Remote store: Firebase at %s", store_cfg.firebase.database_url)
        return FirebaseStore(store_cfg.firebase, write_timeout_seconds=store_cfg.write_timeout_seconds)

    def _create_forecast_provider(self):
        fc = self.config.forecast
        if fc.url:
            from solaris.forecast.providers.http import HttpForecastProvider

            return HttpForecastProvider(fc)

        from solaris.forecast.providers.static import StaticForecastProvider

        logger.info("No forecast URL configured, using static forecast values")
        return StaticForecastProvider(fc)

    async def start(self) -> None:
        """Start all application components and run until stopped."""
        logger.info("Starting Solaris v%s", __version__)
        self._running = True
        self._stop_event.clear()

        if self.controller is None:
            self.build()

        if self._device_driver is not None:
            try:
                await self._device_mqtt.connect()
            except Exception:
                logger.exception("Device MQTT connect failed; pin writes will fail until restart")
            self._device_driver.start()

        # ── Background tasks ─────────────────────────────────
        self._tasks.append(asyncio.create_task(
            self._stream_loop("telemetry", self.store.telemetry_events, self.controller.handle_telemetry),
            name="telemetry_stream",
        ))
        self._tasks.append(asyncio.create_task(
            self._stream_loop("relay", self.store.relay_events, self.controller.handle_relay_map),
            name="relay_stream",
        ))
        self._tasks.append(asyncio.create_task(
            self._forecast_loop(), name="forecast_updater",
        ))

        logger.info(
            "System initialised: relays=%d, threshold=%.0f%%, store=%s",
            len(self.config.relays),
            self.config.automation.threshold_pct,
            self.config.store.backend,
        )

        if not self.config.api.enabled:
            await self._stop_event.wait()
            return

        # ── Operator API ─────────────────────────────────────
        from solaris.api.app import create_app

        app = create_app(self.config, self.controller, config_manager=self.config_manager)
        app.state.application = self

        import uvicorn

        uvi_config = uvicorn.Config(
            app,
            host=self.config.api.host,
            port=self.config.api.port,
            log_level="warning",
        )
        server = uvicorn.Server(uvi_config)
        # Keep process signal handling in main()
        server.install_signal_handlers = lambda: None
        self._server = server

        logger.info("Operator API at http://%s:%d", self.config.api.host, self.config.api.port)

        # Server.serve() blocks until shutdown
        await server.serve()

    async def stop(self) -> None:
        """Gracefully stop all components in reverse order."""
        if not self._running:
            return

        logger.info("Shutting down Solaris")
        self._running = False
        self._stop_event.set()

        if self._server is not None:
            self._server.should_exit = True

        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        if self.controller is not None:
            await self.controller.close()

        if self._device_driver is not None:
            await self._device_driver.stop()
            await self._device_mqtt.disconnect()

        if self.store is not None:
            try:
                await self.store.close()
            except Exception:
                logger.exception("Error closing remote store")

        if self._forecast_provider is not None:
            try:
                await self._forecast_provider.close()
            except Exception:
                logger.exception("Error closing forecast provider")

        self._server = None
        logger.info("Shutdown complete")

    # ── Background loops ──────────────────────────────────────

    async def _sleep(self, seconds: float) -> None:
        """Sleep, returning early if the application is stopping."""
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)

    async def _stream_loop(self, name, open_stream, handle) -> None:
        """Consume one store stream in arrival order, reconnecting on failure."""
        delay = self.config.store.reconnect_delay_seconds
        while not self._stop_event.is_set():
            try:
                async for event in open_stream():
                    handle(event)
                logger.warning("%s stream ended, reconnecting in %.0fs", name, delay)
            except RemoteStoreError as e:
                logger.warning("%s stream failed: %s (reconnecting in %.0fs)", name, e, delay)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("%s stream error (reconnecting in %.0fs)", name, delay)
            await self._sleep(delay)

    async def _forecast_loop(self) -> None:
        """Fetch the forecast on startup, then refresh it periodically."""
        auto = self.config.automation
        forecasts = self.controller.forecasts
        while not self._stop_event.is_set():
            try:
                await forecasts.refresh(self.controller.telemetry.latest)
                interval = auto.forecast_refresh_interval_seconds
            except ForecastUnavailableError:
                interval = auto.forecast_retry_interval_seconds
            await self._sleep(interval)


def main() -> None:
    """Entry point for the application."""
    defaults_path = Path(os.environ.get("SOLARIS_DEFAULTS", "config.defaults.yaml"))
    user_path = Path(os.environ.get("SOLARIS_CONFIG", "config.yaml"))

    config_manager = ConfigManager(defaults_path=defaults_path, user_path=user_path)
    config = config_manager.load()
    setup_logging(config.logging)

    app = Application(config, config_manager)
    stop_requested = False
    signal_count = 0

    async def _run() -> None:
        try:
            await app.start()
        finally:
            if app._running:
                with contextlib.suppress(Exception):
                    await app.stop()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def _request_stop() -> None:
        nonlocal stop_requested, signal_count
        signal_count += 1
        if signal_count >= 2:
            os._exit(130)
        if stop_requested or loop.is_closed():
            return
        stop_requested = True
        loop.call_soon_threadsafe(lambda: asyncio.create_task(app.stop()))

    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _request_stop)
    else:
        signal.signal(signal.SIGINT, lambda *_: _request_stop())

    try:
        loop.run_until_complete(_run())
    except KeyboardInterrupt:
        _request_stop()
        with contextlib.suppress(Exception):
            loop.run_until_complete(app.stop())
    finally:
        pending = [task for task in asyncio.all_tasks(loop) if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            with contextlib.suppress(Exception):
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        loop.close()


if __name__ == "__main__":
    main()
