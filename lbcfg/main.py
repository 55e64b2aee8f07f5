"""Main entry point for lbcfg.

Initializes logging in two phases (defaults then config-driven),
registers backend credentials, builds the handler and runs the
configured transport with graceful shutdown on SIGTERM/SIGINT.

Key functions:
    build_handler: Wire config, credentials, router and routes together.
    main: Async entry point.
    run: Synchronous wrapper that calls asyncio.run(main()).
"""

import asyncio
import signal

import structlog

from . import __version__
from .logging_config import setup_logging


def build_handler(config):
    """Build the LbcfgHandler for a loaded Config.

    Credentials are registered once here; the router receives the
    read-only tree and the registry as its client factory.
    """
    from .backend import ClientRegistry, cloud_client_builder
    from .handler import LbcfgHandler
    from .router import CommandRouter
    from .routes import RouteTable
    from .templates import Translator

    logger = structlog.get_logger("lbcfg.backend")
    registry = ClientRegistry(cloud_client_builder(
        identity_url=config.backend_identity_url,
        timeout=config.backend_timeout,
        max_retries=config.backend_max_retries,
    ))
    registry.register_all(config.credentials)
    logger.info("credentials_loaded", env_keys=sorted(registry.env_keys))
    missing = registry.missing_for(config.tree)
    if missing:
        logger.warning("credentials_missing", env_keys=missing)

    translator = Translator()
    router = CommandRouter(
        tree=config.tree,
        client_factory=registry,
        translator=translator,
        command_prefix=config.command_prefix,
    )
    return LbcfgHandler(router, RouteTable(config.command_prefix), translator)


def build_transport(config, handler):
    """Return the transport selected by ``config.adapter``."""
    from .bot import ShellBot, SignalBot

    if config.adapter == "shell":
        return ShellBot(handler)
    return SignalBot(
        handler,
        api_url=config.signal_api_url,
        allowed_numbers=config.allowed_numbers,
        robot_name=config.robot_name,
    )


async def main():
    """Main async entry point."""
    # Phase 1: defaults, cache_logger_on_first_use=False
    setup_logging()
    logger = structlog.get_logger("lbcfg")

    logger.info("lbcfg_starting", version=__version__)

    from .config import get_config

    config = get_config()
    config.validate()

    # Phase 2: reconfigure with real config, cache_logger_on_first_use=True
    setup_logging(config)

    handler = build_handler(config)
    bot = build_transport(config, handler)

    # Setup graceful shutdown
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def handle_shutdown(sig):
        logger.info("shutdown_signal_received", signal=sig.name)
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, handle_shutdown, sig)
        except NotImplementedError:
            # Windows: add_signal_handler not supported.
            if sig == signal.SIGINT:
                signal.signal(
                    signal.SIGINT,
                    lambda s, f: handle_shutdown(signal.SIGINT),
                )

    try:
        bot_task = asyncio.create_task(bot.run())
        shutdown_task = asyncio.create_task(shutdown_event.wait())

        # Stop on a shutdown signal, or when the transport exits on its own
        await asyncio.wait(
            {bot_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED
        )
        shutdown_task.cancel()
        if not bot_task.done():
            bot_task.cancel()
        try:
            await bot_task
        except asyncio.CancelledError:
            pass

    except Exception as e:
        logger.error("bot_error", error=str(e))
        raise
    finally:
        await bot.stop()
        logger.info("lbcfg_stopped")


def run():
    """Synchronous entry point for the ``lbcfg`` console script."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
