# trade_partitioning/app/main.py

import asyncio
import signal
import sys
from typing import List, Optional

from dependency_injector import providers
from pydantic import ValidationError

from core.config.settings import Settings, Role
from core.config.validator import validate_startup_configuration
from core.logging import configure_logging, get_logger
from core.utils.exceptions import InvalidConfigurationError
from app.containers import AppContainer


class ApplicationOrchestrator:
    """Hosts the configured roles on one message bus."""

    # Consumers bind and start before the requestor's ticker begins emitting
    ROLE_ORDER = (Role.SINK, Role.EXECUTOR, Role.REQUESTOR)

    def __init__(self, settings: Optional[Settings] = None):
        self.container = AppContainer()
        if settings is not None:
            self.container.settings.override(providers.Object(settings))
        self._shutdown_event = asyncio.Event()

        self.settings = self.container.settings()
        configure_logging(self.settings)
        self.logger = get_logger("trade_partitioning.main", component="application")

        self.message_bus = None
        self._started_services: List[object] = []

    def _role_providers(self):
        return {
            Role.SINK: self.container.confirmation_sink_service,
            Role.EXECUTOR: self.container.trade_executor_service,
            Role.REQUESTOR: self.container.trade_requestor_service,
        }

    async def startup(self):
        """Validate, bind subscriptions, start the bus, then start services."""
        self.logger.info("Initializing application",
                         app=self.settings.app_name,
                         version=self.settings.version,
                         environment=self.settings.environment.value,
                         transport=self.settings.transport.value,
                         roles=[r.value for r in self.settings.roles])

        validator = validate_startup_configuration(self.settings)
        for warning in validator.warnings:
            self.logger.warning("Configuration warning", component=warning.component,
                                message=warning.message, config_field=warning.config_field)
        self.logger.info("Configuration validation passed")

        role_providers = self._role_providers()
        services = [role_providers[role]() for role in self.ROLE_ORDER if self.settings.has_role(role)]

        self.message_bus = self.container.message_bus()
        await self.message_bus.start()

        if self.settings.monitoring.metrics_enabled and self.settings.monitoring.metrics_port > 0:
            self.container.prometheus_metrics().start_server(self.settings.monitoring.metrics_port)

        for service in services:
            await service.start()
            self._started_services.append(service)
        self.logger.info("All services started successfully",
                         services=[type(s).__name__ for s in self._started_services])

    async def shutdown(self):
        """Stop services in reverse start order, then drain and stop the bus."""
        self.logger.info("Shutting down application")
        for service in reversed(self._started_services):
            try:
                await service.stop()
            except Exception as e:
                self.logger.error("Error stopping service", service=type(service).__name__, error=str(e))
        self._started_services.clear()

        if self.message_bus is not None:
            await self.message_bus.stop(timeout=self.settings.shutdown_timeout_seconds)
        self.logger.info("Application shutdown complete")

    def request_shutdown(self, signum: Optional[int] = None):
        if signum is not None:
            self.logger.info("Received shutdown signal", signal=signal.Signals(signum).name)
        self._shutdown_event.set()

    async def run(self):
        """Run the application until shutdown."""
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(signum, self.request_shutdown, signum)

        try:
            await self.startup()
            self.logger.info("Application is now running. Press Ctrl+C to exit.")
            await self._shutdown_event.wait()
        finally:
            await self.shutdown()
            for signum in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(signum)


async def main(settings: Optional[Settings] = None):
    """Application entry point"""
    try:
        app = ApplicationOrchestrator(settings)
    except ValidationError as e:
        # Settings failed to load, so logging still has its defaults
        get_logger("trade_partitioning.main", component="application").critical(
            "Invalid configuration, refusing to start", error=str(e))
        sys.exit(1)

    try:
        await app.run()
    except InvalidConfigurationError as e:
        app.logger.critical("Invalid configuration, refusing to start",
                            error=e.message, config_field=e.config_field,
                            config_value=e.config_value)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
