"""Reminder service: due-reminder scanning, queue fan-out and web push delivery.

The dispatcher and sender run as separate processes connected only through
the message queue; the HTTP API reads and writes reminders through the store.
"""
