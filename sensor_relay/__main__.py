"""CLI entry point: ``python -m sensor_relay [--once] [--address ADDR]``."""

from __future__ import annotations

import argparse
import asyncio
import sys

import structlog


# Per-request and per-packet chatter from these libraries drowns relay events.
_NOISY_LOGGERS = ("bleak", "httpx", "httpcore")


def _configure_logging(level: str, fmt: str) -> None:
    """Route structlog through stdlib logging to stderr.

    *fmt* is ``"json"`` for one object per line, anything else for the
    console renderer (coloured only on a terminal).
    """
    import logging

    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", level=log_level, stream=sys.stderr)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="sensor_relay",
        description="Relay BLE temperature/humidity readings to MQTT and HTTP",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        default=False,
        help="Exit after the first reading has been forwarded",
    )
    parser.add_argument(
        "--address",
        default=None,
        help="Only connect to the peripheral with this address/id",
    )
    parser.add_argument(
        "--radio",
        choices=("ble", "sim"),
        default=None,
        help="Override the RADIO setting",
    )
    args = parser.parse_args()

    # Load settings from env / .env file first, then override with CLI flags.
    from sensor_relay.config import RelaySettings

    settings = RelaySettings()
    if args.radio is not None:
        settings.radio = args.radio

    _configure_logging(settings.log_level, settings.log_format)

    logger = structlog.get_logger("sensor_relay")
    logger.info(
        "relay_starting",
        version=__import__("sensor_relay").__version__,
        mode="simulation" if settings.is_simulation else "ble",
        once=args.once,
        address=args.address,
        device_filter=settings.device_name_filter,
    )

    from sensor_relay.relay_loop import run_relay

    try:
        asyncio.run(run_relay(settings, once=args.once, address=args.address))
    except KeyboardInterrupt:
        logger.info("relay_interrupted")
        sys.exit(0)


if __name__ == "__main__":
    main()
