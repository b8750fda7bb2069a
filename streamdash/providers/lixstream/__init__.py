from .client import LixstreamClient, LixstreamError

__all__ = ["LixstreamClient", "LixstreamError"]
