# /flowbot/utils/logging.py

import logging
import sys
import structlog
from flowbot.config.settings import settings

# Engine and API events share one stdout handler: console rendering in
# development, JSON lines everywhere else, with bound contextvars merged in.


def setup_logging(level: str | None = None):
    """
    Route structlog and stdlib loggers through a single ProcessorFormatter.
    `level` overrides settings.log_level when given.
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.environment == "development":
        final_processor = structlog.dev.ConsoleRenderer()
    else:
        final_processor = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=final_processor,
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    # Lifespan may run more than once per process (tests); keep a single handler
    for existing in list(root_logger.handlers):
        if getattr(existing, "_flowbot_handler", False):
            root_logger.removeHandler(existing)
    handler._flowbot_handler = True
    root_logger.addHandler(handler)
    root_logger.setLevel(level or settings.log_level)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
