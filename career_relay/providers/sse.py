"""厂商侧 SSE 行解析。

OpenAI 兼容接口与 Gemini 的 alt=sse 接口都按 `data: <json>` 逐行推送，
这里统一处理：跳过空行/注释行/[DONE]，解析 JSON 并用各厂商的 extract 取出文本。
单行 JSON 无法解析或结构不符时只记 DEBUG 日志并跳过，不中断整个流。
"""

import json
from typing import Any, AsyncIterator, Callable, Optional

from career_relay.infrastructure.logging.logger import logger


DONE_SENTINEL = "[DONE]"

TextExtractor = Callable[[Any], Optional[str]]


def _drop(provider: str, data_str: str, reason: str) -> None:
    logger.debug(
        "relay.line_dropped",
        extra={"extra": {"provider": provider, "length": len(data_str), "reason": reason}},
    )


async def iter_text_deltas(lines: AsyncIterator[str], provider: str, extract: TextExtractor) -> AsyncIterator[str]:
    async for line in lines:
        if not line or not line.startswith("data:"):
            continue
        data_str = line[5:].strip()
        if not data_str or data_str == DONE_SENTINEL:
            continue
        try:
            text = extract(json.loads(data_str))
        except json.JSONDecodeError:
            _drop(provider, data_str, "invalid_json")
            continue
        except (KeyError, IndexError, TypeError, AttributeError):
            _drop(provider, data_str, "unexpected_shape")
            continue
        if text:
            yield text
