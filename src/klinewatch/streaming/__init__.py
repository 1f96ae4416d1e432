from klinewatch.streaming.client import ReconnectPolicy, StreamClient
from klinewatch.streaming.decoder import KlineDecodeError, decode_message

__all__ = ["ReconnectPolicy", "StreamClient", "KlineDecodeError", "decode_message"]
