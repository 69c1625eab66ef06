from .channel import Channel, WebSocketChannel

__all__ = ["Channel", "WebSocketChannel"]
