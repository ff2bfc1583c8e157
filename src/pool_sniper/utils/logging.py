"""结构化日志配置模块。

使用 structlog 提供结构化日志支持，支持 JSON 和控制台两种输出格式。
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import Processor

from pool_sniper.config import LogFormat, get_settings


def setup_logging() -> None:
    """配置结构化日志系统。

    根据配置设置日志级别和输出格式。
    """
    settings = get_settings()

    # 设置标准库日志级别
    log_level = getattr(logging, settings.log_level)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    # 共享处理器
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    # 根据格式选择渲染器
    if settings.log_format == LogFormat.JSON:
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """获取结构化日志记录器。

    Args:
        name: 日志记录器名称。如果为 None，则使用调用模块名。

    Returns:
        结构化日志记录器实例。
    """
    return structlog.get_logger(name)


# 便捷日志函数
def log_swap_attempt(
    logger: structlog.stdlib.BoundLogger,
    *,
    mint: str,
    direction: str,
    attempt: int,
    max_attempts: int,
    **kwargs: Any,
) -> None:
    """记录一次交易提交尝试。"""
    logger.info(
        "swap_attempt",
        mint=mint,
        direction=direction,
        attempt=f"{attempt}/{max_attempts}",
        **kwargs,
    )


def log_swap_result(
    logger: structlog.stdlib.BoundLogger,
    *,
    mint: str,
    direction: str,
    confirmed: bool,
    signature: str | None = None,
    error: str | None = None,
    **kwargs: Any,
) -> None:
    """记录交易确认结果。"""
    level = "info" if confirmed else "warning"
    getattr(logger, level)(
        "swap_confirmed" if confirmed else "swap_not_confirmed",
        mint=mint,
        direction=direction,
        signature=signature,
        error=error,
        **kwargs,
    )


def log_position_event(
    logger: structlog.stdlib.BoundLogger,
    *,
    mint: str,
    stage: str,
    **kwargs: Any,
) -> None:
    """记录持仓生命周期事件。"""
    logger.info(
        "position_event",
        mint=mint,
        stage=stage,
        **kwargs,
    )


def log_filter_report(
    logger: structlog.stdlib.BoundLogger,
    *,
    mint: str,
    passed: bool,
    reasons: list[dict[str, object]],
    **kwargs: Any,
) -> None:
    """记录过滤器结果（失败时逐项列出）。"""
    logger.debug(
        "filter_report",
        mint=mint,
        passed=passed,
        reasons=reasons,
        **kwargs,
    )
