import structlog
import logging
import os
from beacon_ingestor.config import config

def setup_logger():
    """Configure logging - human readable by default, JSON when FORCE_JSON_LOGS=true."""

    force_json = os.getenv("FORCE_JSON_LOGS", "false").lower() == "true"

    # Configure standard library logging
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
        format="%(message)s"
    )

    if force_json:
        processors = [
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ]
    else:
        processors = [
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            simple_console_renderer
        ]

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

def simple_console_renderer(logger, method_name, event_dict):
    """Simple console renderer for development."""
    timestamp = event_dict.pop("timestamp", "")
    level = event_dict.pop("level", "INFO").upper()
    event = event_dict.pop("event", "")

    msg = f"{timestamp} [{level:<5}] {event}"

    if event_dict:
        # Cycle coordinates first, everything else after
        important_fields = ["cycle", "head_slot", "slot", "epoch", "window_start", "window_end"]
        context_parts = []

        for field in important_fields:
            if field in event_dict:
                context_parts.append(f"{field}={event_dict.pop(field)}")

        for k, v in event_dict.items():
            if k not in ["logger", "stack", "exception"]:
                context_parts.append(f"{k}={v}")

        if context_parts:
            msg += f" | {' '.join(context_parts)}"

    return msg

logger = structlog.get_logger()
