"""
Configuración de logging estructurado con structlog.
"""

import logging

import structlog

from app.core.config import settings


def configure_logging(json_logs: bool = None, level: str = None) -> None:
    """
    Configura structlog para todo el proceso.
    JSON en producción, consola legible en desarrollo.
    """
    if json_logs is None:
        json_logs = settings.is_production
    level = (level or settings.log_level).upper()

    logging.basicConfig(format="%(message)s", level=getattr(logging, level, logging.INFO))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if json_logs
                else structlog.dev.ConsoleRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
