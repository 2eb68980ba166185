"""Test helpers: a manual clock and an in-memory browser."""

from .clock import ManualClock, eventually, settle
from .fake_browser import FakeBrowser, FakeLauncher

__all__ = ["FakeBrowser", "FakeLauncher", "ManualClock", "eventually", "settle"]
