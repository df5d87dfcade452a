"""
Reminder service package.

HTTP API for reminder jobs, an idempotency layer for creation, a lifecycle
state machine, a RabbitMQ event publisher and a Celery-driven due-reminder
scanner.
"""

__version__ = "0.1.0"
