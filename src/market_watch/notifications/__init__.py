"""Outbound alerts."""

from .telegram import AlertSink, TelegramNotifier, ThesisAlert

__all__ = ["AlertSink", "TelegramNotifier", "ThesisAlert"]
