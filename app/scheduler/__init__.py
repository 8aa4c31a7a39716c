"""Scheduler package initialization."""
