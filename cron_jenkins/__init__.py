"""Cron-driven Jenkins build scheduler.

This package contains:
- A small Jenkins client (folder-aware job listing, parameter discovery,
  CSRF-aware build triggering).
- The scheduler service: persisted job definitions and execution history,
  an in-memory registry of live timers/cron triggers, and the fan-out
  routine that triggers every target of a job and reconciles the results.
"""

__version__ = "1.0.0"
