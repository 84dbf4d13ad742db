"""Main entry point for the TuningSearch MCP server."""

import argparse
import asyncio
import signal
import sys

import pydantic

from tuningsearch_mcp import __version__
from tuningsearch_mcp.config import Settings, get_settings, validate_settings
from tuningsearch_mcp.exceptions import ConfigurationError, TuningSearchError
from tuningsearch_mcp.monitoring import MetricsServer, configure_logging, get_logger
from tuningsearch_mcp.server import SearchApplication, build_server


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Args:
        argv: Arguments without the program name. Defaults to sys.argv.

    Returns:
        Parsed arguments.
    """
    parser = argparse.ArgumentParser(
        prog="tuningsearch-mcp",
        description="MCP server for TuningSearch web search, news search and page crawling.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Override MONITORING_LOG_LEVEL",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        help="Expose Prometheus metrics on this port (enables the endpoint)",
    )
    return parser.parse_args(argv)


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Return settings with command line overrides applied to a copy."""
    monitoring: dict[str, object] = {}
    if args.log_level:
        monitoring["log_level"] = args.log_level
    if args.metrics_port is not None:
        monitoring["metrics_enabled"] = True
        monitoring["metrics_port"] = args.metrics_port
    if not monitoring:
        return settings
    return settings.model_copy(update={"monitoring": settings.monitoring.model_copy(update=monitoring)})


async def serve(app: SearchApplication) -> None:
    """Run the stdio server until the client disconnects or a signal arrives."""
    logger = get_logger(__name__)
    server = build_server(app)
    loop = asyncio.get_running_loop()
    server_task = asyncio.create_task(server.run_stdio_async())

    def request_shutdown(sig: signal.Signals) -> None:
        logger.info("Received shutdown signal", signal=sig.name)
        server_task.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_shutdown, sig)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            pass

    await app.start()
    try:
        await server_task
    except asyncio.CancelledError:
        logger.info("Server task cancelled")
    finally:
        await app.stop()


def main(argv: list[str] | None = None) -> None:
    """Start the server."""
    args = parse_args(argv)
    try:
        settings = apply_overrides(get_settings(), args)
    except pydantic.ValidationError as e:
        configure_logging()
        get_logger(__name__).error(
            "Invalid configuration",
            errors=[f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors()],
        )
        sys.exit(1)

    configure_logging(
        log_level=settings.monitoring.log_level,
        json_output=settings.monitoring.json_logs,
    )
    logger = get_logger(__name__)

    try:
        validate_settings(settings)
        app = SearchApplication.from_settings(settings)
    except ConfigurationError as e:
        logger.error("Invalid configuration", errors=e.messages)
        sys.exit(1)
    except TuningSearchError as e:
        logger.error("Failed to initialize server", error=str(e))
        sys.exit(1)

    metrics_server: MetricsServer | None = None
    if settings.monitoring.metrics_enabled:
        metrics_server = MetricsServer(
            port=settings.monitoring.metrics_port,
            host=settings.monitoring.metrics_host,
        )

    logger.info(
        "Starting TuningSearch MCP server",
        version=__version__,
        metrics_enabled=settings.monitoring.metrics_enabled,
        cache_enabled=settings.cache.enabled,
    )

    async def run() -> None:
        if metrics_server is not None:
            metrics_server.start()
        try:
            await serve(app)
        finally:
            if metrics_server is not None:
                metrics_server.stop()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
