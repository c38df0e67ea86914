"""Notification dispatch pipeline.

The dispatcher scans for due reminders and fans each one out to the queue,
one message per device; senders drain the queue, deliver web pushes and
settle the reminder status from the recorded delivery outcomes.
"""
