import logging
import sys
import structlog

# chatty third-party loggers kept at WARNING unless LOG_LEVEL is DEBUG
_NOISY = ("sqlalchemy.engine", "multipart", "celery.app.trace", "kombu")


def configure_logging(env: str = "dev", level: str = "INFO") -> None:
    shared_processors = [
        # request_id / import_job_id bound via structlog.contextvars
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if env == "prod":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=env == "dev")

    structlog.configure(
        processors=shared_processors + [renderer],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=root_level)
    for name in _NOISY:
        logging.getLogger(name).setLevel(root_level if root_level == logging.DEBUG else logging.WARNING)


logger = structlog.get_logger()
