"""Notification module for queue alert transitions."""

from .telegram import TelegramNotifier, build_alert_message, send_telegram_message

__all__ = ["TelegramNotifier", "build_alert_message", "send_telegram_message"]
