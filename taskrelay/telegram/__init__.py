from .interface import TelegramInterface, md_to_html, chunk_text

__all__ = ["TelegramInterface", "md_to_html", "chunk_text"]
