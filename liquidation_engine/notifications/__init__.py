"""Operator notification channels."""
from .email import EmailNotifier
from .telegram import TelegramNotifier

__all__ = ["TelegramNotifier", "EmailNotifier"]
