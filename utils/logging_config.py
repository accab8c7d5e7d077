# utils/logging_config.py

import logging
import logging.handlers
import sys
from pathlib import Path
import json
from datetime import datetime

# Handlers added by the last setup_logging call, replaced on the next one
_installed_handlers = []


def setup_logging(config) -> logging.Logger:
    """
    Configure root logging: console output plus a rotating log file,
    and optionally a JSON file for structured logs
    """
    log_dir = Path(config.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    _remove_installed_handlers(root)
    root.setLevel(getattr(logging, config.log_level.upper(), logging.INFO))

    # Console handler
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(root.level)
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))

    # File handler (rotating)
    file_handler = logging.handlers.RotatingFileHandler(
        log_dir / "media_similarity.log",
        maxBytes=10*1024*1024,  # 10 MB
        backupCount=5
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    ))

    handlers = [console_handler, file_handler]

    if config.structured_logs:
        json_handler = logging.handlers.RotatingFileHandler(
            log_dir / "media_similarity_structured.json",
            maxBytes=10*1024*1024,
            backupCount=5
        )
        json_handler.setLevel(logging.INFO)
        json_handler.setFormatter(JSONFormatter())
        handlers.append(json_handler)

    for handler in handlers:
        root.addHandler(handler)
    _installed_handlers.extend(handlers)

    return root


def _remove_installed_handlers(root: logging.Logger):
    while _installed_handlers:
        handler = _installed_handlers.pop()
        root.removeHandler(handler)
        handler.close()


class JSONFormatter(logging.Formatter):
    """Format logs as JSON"""

    def format(self, record):
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)
