from .client import TelegramClient, TelegramError, build_caption

__all__ = ["TelegramClient", "TelegramError", "build_caption"]
