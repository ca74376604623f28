"""Relay 对外的 SSE 帧格式。

三种帧，所有厂商一致：
- 文本增量: data: {"text":"..."}\\n\\n
- 结束:     data: [DONE]\\n\\n
- 错误:     data: {"error":"..."}\\n\\n

JSON 紧凑编码且保留非 ASCII 字符，与前端 EventSource 解析逻辑对齐；
文本里的换行会被 JSON 转义，不会破坏帧边界。
"""

import json


DONE_FRAME = "data: [DONE]\n\n"


def _frame(payload: dict) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False, separators=(',', ':'))}\n\n"


def encode_text(text: str) -> str:
    return _frame({"text": text})


def encode_done() -> str:
    return DONE_FRAME


def encode_error(message: str) -> str:
    return _frame({"error": message})
