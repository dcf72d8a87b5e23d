"""Cron-friendly command wrapper with overlap locking and failure suppression."""

__version__ = "0.3.0"
