"""
Logging setup shared by the simulator modules
"""

import json
import logging
import os
from datetime import datetime
from logging.handlers import RotatingFileHandler

from config import Config

FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logger(name: str, filename: str = None) -> logging.Logger:
    """Console logger plus a rotating file handler under Config.LOG_DIR"""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    formatter = logging.Formatter(FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if Config.LOG_TO_FILE and filename:
        os.makedirs(Config.LOG_DIR, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(Config.LOG_DIR, filename),
            maxBytes=10*1024*1024,  # 10MB
            backupCount=5
        )
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


class StructuredLogger:
    """Structured logging for routing decisions"""

    def __init__(self, name="printer_router", filename="printer_router.log"):
        self.logger = setup_logger(name, filename)

    def log_event(self, event_type, data, level="info"):
        """Log structured event"""
        log_entry = {
            'timestamp': datetime.now().isoformat(),
            'event': event_type,
            'data': data
        }

        log_func = getattr(self.logger, level)
        log_func(json.dumps(log_entry, default=str))

    def log_error(self, error_type, details):
        self.log_event('error', {
            'error_type': error_type,
            'details': str(details)
        }, level='error')
