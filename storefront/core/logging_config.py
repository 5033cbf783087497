import logging
import structlog
from storefront.core.config import Settings, settings

LEVEL_BY_ENVIRONMENT = {
    "production": "INFO",
    "staging": "INFO",
    "development": "INFO",
    "test": "WARNING",
    "testing": "WARNING",
}

JSON_ENVIRONMENTS = {"production", "staging"}

# Request logging middleware already records every request
NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "celery.app.trace")


def resolve_log_level(config: Settings = settings) -> int:
    """LOG_LEVEL wins, then DEBUG, then the environment default."""
    if config.LOG_LEVEL:
        name = config.LOG_LEVEL
    elif config.DEBUG:
        name = "DEBUG"
    else:
        name = LEVEL_BY_ENVIRONMENT.get(config.ENVIRONMENT, "INFO")

    level = logging.getLevelName(name.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown LOG_LEVEL: {name}")
    return level


def select_renderer(config: Settings = settings):
    if config.ENVIRONMENT in JSON_ENVIRONMENTS and not config.DEBUG:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=config.DEBUG)


def configure_logging(config: Settings = settings) -> int:
    """Configure structlog over stdlib logging and return the root level."""
    level = resolve_log_level(config)
    service = {"service": config.PROJECT_NAME, "environment": config.ENVIRONMENT}

    def add_service_context(logger, method_name, event_dict):
        for key, value in service.items():
            event_dict.setdefault(key, value)
        return event_dict

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            add_service_context,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            select_renderer(config),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", level=level)
    logging.getLogger().setLevel(level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    return level
