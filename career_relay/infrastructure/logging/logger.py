"""JSON Lines 文件日志。

每条记录一行 JSON：ts/level/name/msg，再合并调用方通过
extra={"extra": {...}} 传入的结构化字段（provider、model、chunks 等）。
log_redact_content 打开时 msg 只保留前 64 个字符；API 密钥从不写入日志。
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from career_relay.config.settings import settings


LOGGER_NAME = "career_relay"
LOG_FILE = "relay.log"
REDACTED_LENGTH = 64


class JsonLineFormatter(logging.Formatter):
    def __init__(self, redact_content: bool = False):
        super().__init__()
        self.redact_content = redact_content

    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage() or ""
        if self.redact_content:
            msg = msg[:REDACTED_LENGTH]
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "name": record.name,
            "msg": msg,
        }
        fields = getattr(record, "extra", None)
        if isinstance(fields, dict):
            payload.update(fields)
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def setup_logger(cfg=settings) -> logging.Logger:
    """配置 career_relay 日志器；重复调用不会重复挂载 handler。"""

    log = logging.getLogger(LOGGER_NAME)
    log.setLevel(getattr(logging, str(cfg.log_level).upper(), logging.INFO))
    if any(isinstance(h.formatter, JsonLineFormatter) for h in log.handlers):
        return log

    log_dir = Path(cfg.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_dir / LOG_FILE, encoding="utf-8")
    handler.setFormatter(JsonLineFormatter(redact_content=cfg.log_redact_content))
    log.addHandler(handler)
    return log


logger = setup_logger()
