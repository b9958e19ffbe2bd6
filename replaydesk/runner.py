"""
Dashboard runner.
"""

import asyncio
import logging
import sys
from collections.abc import Callable

from replaydesk.config import ClientConfig
from replaydesk.service import HttpTradingService, TradingService
from replaydesk.session.dashboard import Dashboard
from replaydesk.session.events import ErrorRaised, StatusChanged
from replaydesk.types import Mode


log = logging.getLogger(__name__)


__all__ = [
    "configure_logging",
    "main",
    "run_dashboard",
]


def configure_logging(level: str = "INFO", force: bool = False) -> None:
    """
    Configure root logger with console output.

    By default, this is non-destructive: if the root logger already has handlers,
    it will do nothing (assuming the application has configured logging).

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        force: If True, clear existing handlers and force this configuration
    """
    root_logger = logging.getLogger()

    if root_logger.hasHandlers() and not force:
        return

    root_logger.setLevel(level.upper())

    if force:
        root_logger.handlers.clear()

    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)


def _log_status(event: StatusChanged) -> None:
    log.info("Status: %s", event.message)


def _log_error(event: ErrorRaised) -> None:
    log.warning("%s error (%s): %s", event.mode.value, event.kind, event.message)


async def _run_dashboard_async(
    config: ClientConfig,
    service: TradingService,
    mode: Mode,
    autostart: bool,
    duration: float | None,
) -> None:
    dashboard = Dashboard(service, config)
    dashboard.events.subscribe(StatusChanged, _log_status)
    dashboard.events.subscribe(ErrorRaised, _log_error)

    try:
        if mode is not dashboard.mode:
            await dashboard.select_mode(mode)
        else:
            await dashboard.activate()

        if autostart:
            await dashboard.start()

        if duration is None:
            await asyncio.Event().wait()
        else:
            await asyncio.sleep(duration)

        summary = dashboard.summary()
        log.info(
            "Equity %.2f (cash %.2f, holdings %.2f), pnl %s over %d trade%s",
            summary.equity,
            summary.cash,
            summary.holdings_value,
            "n/a" if summary.pnl is None else f"{summary.pnl:+.2f}",
            summary.trade_count,
            "s" if summary.trade_count != 1 else "",
        )
    except asyncio.CancelledError:
        log.info("Dashboard cancelled")
        raise
    finally:
        # closes the service too, even if activation failed
        await dashboard.close()


async def _async_run_with_service_factory(
    config: ClientConfig,
    service_factory: Callable[[], TradingService],
    mode: Mode,
    autostart: bool,
    duration: float | None,
    setup_logging: bool,
) -> None:
    if setup_logging:
        configure_logging(config.log_level)

    log.info("=" * 70)
    log.info("Replaydesk Dashboard")
    log.info("=" * 70)
    log.info(
        "Service %s, symbol %s, %s on account %d",
        config.base_url,
        config.symbol,
        mode.value,
        config.account_for(mode),
    )
    log.info("-" * 70)

    service = service_factory()
    await service.start()
    await _run_dashboard_async(config, service, mode, autostart, duration)


def run_dashboard(
    config: ClientConfig | None = None,
    service_factory: Callable[[], TradingService] | None = None,
    duration: float | None = None,
    *,
    mode: Mode = Mode.TRADING,
    autostart: bool = True,
    setup_logging: bool = True,
) -> None:
    """
    Run the dashboard engine headless until interrupted.

    This is the synchronous entry point. It manages the asyncio event loop
    and the lifecycle of the service client and dashboard.

    Args:
        config: Client configuration; ``ClientConfig()`` defaults if omitted.
        service_factory: A callable returning an unstarted `TradingService`.
            Defaults to an `HttpTradingService` for ``config.base_url``.
        duration: Seconds to run before shutting down; ``None`` runs until
            interrupted.
        mode: Mode to activate on start-up.
        autostart: If `True`, start the mode's polling loop immediately.
        setup_logging: If `True`, configures the root logger.
    """
    config = config or ClientConfig()
    if service_factory is None:
        def service_factory() -> TradingService:
            return HttpTradingService(config.base_url, timeout=config.request_timeout)

    exit_code = 0

    try:
        asyncio.run(
            _async_run_with_service_factory(
                config=config,
                service_factory=service_factory,
                mode=mode,
                autostart=autostart,
                duration=duration,
                setup_logging=setup_logging,
            )
        )

    except KeyboardInterrupt:
        log.info("")
        log.info("-" * 70)
        log.info("Interrupted by user - shutting down gracefully")

    except Exception as e:
        log.exception("Fatal error in dashboard runner: %s", e)
        exit_code = 1

    finally:
        log.info("=" * 70)
        log.info("Replaydesk shut down complete")
        log.info("=" * 70)

    if exit_code:
        sys.exit(exit_code)


def main() -> None:
    """Console entry point; configuration comes from ``REPLAYDESK_*`` variables."""
    try:
        config = ClientConfig.from_env()
    except ValueError as e:
        configure_logging()
        log.error("Invalid configuration: %s", e)
        sys.exit(2)

    mode_name = (sys.argv[1] if len(sys.argv) > 1 else Mode.TRADING.value).upper()
    try:
        mode = Mode(mode_name)
    except ValueError:
        configure_logging()
        log.error("Unknown mode %r (expected TRADING or TRAINING)", mode_name)
        sys.exit(2)

    run_dashboard(config, mode=mode)
