"""Reminder service module (API, scheduler, event publisher).

Exposes HTTP APIs for creating and managing reminders, a periodic scanner
that claims due reminders exactly once, and a RabbitMQ publisher for the
resulting lifecycle events.
"""
