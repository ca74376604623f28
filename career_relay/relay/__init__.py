"""流式中转层：统一的 SSE 帧格式与多厂商 StreamRelay。"""

from career_relay.relay.framing import DONE_FRAME, encode_done, encode_error, encode_text
from career_relay.relay.stream_relay import RelayStream, StreamRelay

__all__ = ["DONE_FRAME", "RelayStream", "StreamRelay", "encode_done", "encode_error", "encode_text"]
