"""
日志配置 (structlog)

进程启动时调用一次 configure_logging()；各模块使用 structlog.get_logger(__name__)。
"""

import logging
import sys
from typing import Any

import structlog

from .config import ScimConfig

SENSITIVE_KEYS = ("token", "authorization", "secret", "password")


def redact_sensitive(_logger: Any, _method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """屏蔽 token / secret 等敏感字段的值"""
    def is_sensitive(key: Any) -> bool:
        key_norm = str(key).lower().replace("-", "_")
        return any(fragment in key_norm for fragment in SENSITIVE_KEYS)

    def redact(data: Any) -> Any:
        if isinstance(data, dict):
            return {k: ("[REDACTED]" if is_sensitive(k) else redact(v)) for k, v in data.items()}
        if isinstance(data, list):
            return [redact(item) for item in data]
        return data

    return redact(event_dict)


def _stderr_logger(*args: Any) -> structlog.PrintLogger:
    # 每次取当前的 sys.stderr，stdout 只留给命令输出
    return structlog.PrintLogger(file=sys.stderr)


def configure_logging(config: ScimConfig) -> None:
    level = logging.getLevelName(config.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_sensitive,
    ]
    if config.log_json:
        processors += [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=_stderr_logger,
        cache_logger_on_first_use=False,
    )

    # uvicorn 等标准库日志输出到同一个流
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level)
