"""
Logging configuration for the Attendance Scanner.

Every line carries the camera id and the scanner mode that was active
when it was logged (idle, recognition or enrollment).
"""

import logging
import sys

_scanner_mode = 'idle'


def set_scanner_mode(mode: str) -> None:
    """Record the active scanner mode for subsequent log lines."""
    global _scanner_mode
    _scanner_mode = mode


class ScannerContextFilter(logging.Filter):
    """Add camera and scanner mode context to log records."""

    def __init__(self, camera_id: str):
        super().__init__()
        self.camera_id = camera_id

    def filter(self, record: logging.LogRecord) -> bool:
        record.camera_id = self.camera_id
        record.scanner_mode = _scanner_mode
        return True


def setup_logging(camera_id: str, debug: bool = False) -> None:
    """
    Configure console logging for the service.

    Args:
        camera_id: Camera identifier for log context
        debug: Enable debug level logging (per-tick votes and pose decisions)
    """
    level = logging.DEBUG if debug else logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(
        '%(asctime)s [%(levelname)s] [camera=%(camera_id)s mode=%(scanner_mode)s] '
        '%(name)s: %(message)s'
    ))
    handler.addFilter(ScannerContextFilter(camera_id))
    root_logger.addHandler(handler)

    # Werkzeug logs every preview and status poll at INFO
    logging.getLogger('werkzeug').setLevel(logging.WARNING)
    # insightface/onnxruntime print model loading chatter at INFO
    logging.getLogger('insightface').setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Logger for a module (pass __name__)."""
    return logging.getLogger(name)
