# storefront/core/logging_config.py
"""
Logging configuration for the storefront.

Pipeline failures are tagged with the family they belong to, passed as
`extra={"failure": ...}`:

- FAILURE_VALIDATION: the client sent something we refused (4xx)
- FAILURE_INFRASTRUCTURE: a backing service failed (5xx)

Every line carries the tag ("-" when there is none), and infrastructure
failures are additionally written to their own incidents log so they can be
alerted on without sifting through rejected requests.
"""

import os
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict

FAILURE_VALIDATION = "validation"
FAILURE_INFRASTRUCTURE = "infrastructure"

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(failure)s] %(message)s'


def failure_extra(infrastructure: bool) -> Dict[str, str]:
    """`extra` mapping that tags a log record with its failure family"""
    return {"failure": FAILURE_INFRASTRUCTURE if infrastructure else FAILURE_VALIDATION}


class FailureTagFilter(logging.Filter):
    """Give untagged records a placeholder so the format never breaks"""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "failure"):
            record.failure = "-"
        return True


class InfrastructureOnlyFilter(logging.Filter):
    """Pass only records tagged as infrastructure failures"""

    def filter(self, record: logging.LogRecord) -> bool:
        return getattr(record, "failure", None) == FAILURE_INFRASTRUCTURE


def _rotating_handler(log_file: Path, formatter: logging.Formatter) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        filename=str(log_file),
        maxBytes=5 * 1024 * 1024,  # 5 MB
        backupCount=5,
        encoding='utf-8'
    )
    handler.setFormatter(formatter)
    handler.addFilter(FailureTagFilter())
    return handler


def _has_file_handler(root_logger: logging.Logger, log_file: Path) -> bool:
    return any(
        isinstance(h, RotatingFileHandler) and h.baseFilename == os.path.abspath(log_file)
        for h in root_logger.handlers
    )


def setup_logging():
    """Configure the root logger with console, rotating file and incidents output"""
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_dir = Path(os.getenv("LOG_DIR", "logs"))

    log_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    formatter = logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

    # Console handler (attached once)
    if not any(type(h) is logging.StreamHandler for h in root_logger.handlers):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        console_handler.addFilter(FailureTagFilter())
        root_logger.addHandler(console_handler)

    log_file = log_dir / 'storefront.log'
    if not _has_file_handler(root_logger, log_file):
        root_logger.addHandler(_rotating_handler(log_file, formatter))

    incidents_file = log_dir / 'incidents.log'
    if not _has_file_handler(root_logger, incidents_file):
        incidents_handler = _rotating_handler(incidents_file, formatter)
        incidents_handler.addFilter(InfrastructureOnlyFilter())
        root_logger.addHandler(incidents_handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("minio").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    return root_logger
