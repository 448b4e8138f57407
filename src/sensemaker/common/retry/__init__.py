"""Retry routing: headers and DLQ decisions, the task retry handler and the scheduler."""
