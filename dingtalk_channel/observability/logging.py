from __future__ import annotations
import logging, sys
import structlog

# Event keys whose values must never reach a log sink.
_SECRET_KEYS = frozenset({"client_secret", "clientSecret", "appSecret", "access_token", "accessToken"})

def _redact_secrets(logger, method_name, event_dict):
    for key in _SECRET_KEYS.intersection(event_dict):
        event_dict[key] = "***"
    return event_dict

def configure_logging(level: str = "INFO", json_logs: bool = True) -> None:
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level, stream=sys.stdout, format="%(message)s")

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer(),
    ]

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=True,
    )

def get_logger(name: str = "dingtalk"):
    return structlog.get_logger(f"dingtalk.{name}" if name != "dingtalk" else name)

def bind_account_id(account_id: str | None):
    """Context manager tagging every log line inside it with the DingTalk account."""
    return structlog.contextvars.bound_contextvars(account_id=account_id or "-")
