"""
Structured logging configuration using structlog.
Outputs JSON in production, pretty-printed in development.

Download tokens and bearer credentials are bearer secrets: anything logged
under a sensitive key is masked before it reaches a renderer.
"""

import logging
import sys
import structlog
from storefront.core.config import get_settings

SENSITIVE_KEYS = frozenset({"token", "digest", "authorization", "access_token", "secret"})

_configured = False


def redact_secrets(logger, method_name, event_dict):
    for key in SENSITIVE_KEYS.intersection(event_dict):
        value = event_dict[key]
        if isinstance(value, str) and len(value) > 8:
            event_dict[key] = f"{value[:4]}...{value[-4:]}"
        else:
            event_dict[key] = "***"
    return event_dict


def setup_logging() -> None:
    global _configured
    settings = get_settings()

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.ENVIRONMENT == "production":
        # One JSON object per line for the log shipper
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    # Lifespan can run more than once per process (tests, reloads)
    if not _configured:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                foreign_pre_chain=shared_processors,
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    renderer,
                ],
            )
        )
        root_logger.addHandler(handler)
        _configured = True

    # Lock waits show up as slow requests; per-statement SQL logging adds nothing
    for noisy in ("uvicorn.access", "sqlalchemy.engine", "aiosqlite", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
