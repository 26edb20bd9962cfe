"""
日志配置 - 基于 loguru，导入时完成初始化

级别约定:
- DEBUG: 分类细节、队列读写、候选归一化
- INFO:  分配确认、业务冲突、对账结果
- WARNING: 网络失败转离线、会话失效
- ERROR: 响应格式异常、连续对账失败告警

环境变量:
- LOG_LEVEL: 控制台级别（容器内默认 INFO，本地默认 DEBUG）
- LOG_DIR: 日志目录，默认 <项目根>/logs
- LOG_RETENTION_DAYS: 文件保留天数，默认 14
- LOG_DISABLE_FILE=true: 只输出到控制台（测试使用）

请求相关日志统一以 "[request_id]" 开头:
    logger.info("  [{}] 分配已确认", request_id)
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

from loguru import logger

_IN_CONTAINER = os.path.exists("/.dockerenv") or os.getenv("DOCKER_CONTAINER", "").lower() == "true"

_DEV_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{message}</cyan>"
_PLAIN_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {message}"
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{line} | {message}"

_QUIET_LOGGERS = ("httpx", "httpcore", "apscheduler", "sqlalchemy.engine", "uvicorn.access")


def setup_logging() -> None:
    level = os.getenv("LOG_LEVEL", "INFO" if _IN_CONTAINER else "DEBUG").upper()

    logger.remove()
    logger.add(
        sys.stdout,
        level=level,
        format=_PLAIN_FORMAT if _IN_CONTAINER else _DEV_FORMAT,
        colorize=not _IN_CONTAINER,
        backtrace=not _IN_CONTAINER,
        diagnose=False,
    )

    if os.getenv("LOG_DISABLE_FILE", "false").lower() != "true":
        log_dir = Path(os.getenv("LOG_DIR", str(Path(__file__).resolve().parents[2] / "logs")))
        log_dir.mkdir(parents=True, exist_ok=True)
        retention = f"{int(os.getenv('LOG_RETENTION_DAYS', '14'))} days"

        # 同步写入；catch=True 保证磁盘问题不影响分配流程
        for filename, file_level in (("assignments.log", "DEBUG"), ("error.log", "ERROR")):
            logger.add(  # type: ignore[call-overload]
                log_dir / filename,
                level=file_level,
                format=_FILE_FORMAT,
                rotation="20 MB",
                retention=retention,
                compression="gz",
                encoding="utf-8",
                enqueue=False,
                catch=True,
            )

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


setup_logging()

__all__ = ["logger", "setup_logging"]
