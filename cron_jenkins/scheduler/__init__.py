"""Scheduler service package.

This package contains the scheduler runtime that:
- Persists scheduled jobs, Jenkins configurations and execution history to a DB.
- Arms one in-memory trigger per active job (one-shot timer or cron thread).
- Fans each fire out to every target job and reconciles the outcomes into history.
- Exposes a small control surface via FastMCP tools.
"""
