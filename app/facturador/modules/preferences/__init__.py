"""Notification channels, exchange rates and low-stock alerts."""
