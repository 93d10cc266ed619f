"""
Application startup functions.
"""

import logging
import sys
from typing import Optional

from flask import current_app

from acer_storage.config.app_config import LOG_LEVEL, NOISY_LOGGERS
from acer_storage.services.storage import ConfigurationError, StorageService, StorageSettings

EXTENSION_KEY = 'storage'


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """Send all records to stdout with one handler on the root logger."""
    log_level = (level or LOG_LEVEL).upper()
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    handler.setFormatter(formatter)

    # Get the root logger and clear any existing handlers to avoid duplicates
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(log_level)
    root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return root_logger


def initialize_storage(app, settings: Optional[StorageSettings] = None) -> StorageService:
    """Build the storage service once and attach it to the app. Misconfiguration stops startup."""
    try:
        service = StorageService(settings)
    except ConfigurationError as e:
        app.logger.error(f"Storage initialization failed: {e}")
        raise
    app.extensions[EXTENSION_KEY] = service
    app.logger.info(f"Storage initialized with backend '{service.backend_name}'")
    return service


def get_storage_service(app=None) -> StorageService:
    if app is None:
        app = current_app
    try:
        return app.extensions[EXTENSION_KEY]
    except KeyError:
        raise ConfigurationError('Storage has not been initialized; call initialize_storage(app) at startup')
