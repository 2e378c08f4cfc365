"""Scheduler adapters - background jobs."""

from .reaper import create_reaper, start_reaper, stop_reaper

__all__ = ["create_reaper", "start_reaper", "stop_reaper"]
