"""
Shared test configuration.

Adds src/ to sys.path so the flat modules (correlation_engine, models, ...)
and the analytics/pipeline packages import the same way they do at runtime,
and provides a deterministic clock.
"""

import os
import sys
from datetime import datetime, timedelta

import pytest

_project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
_src_dir = os.path.join(_project_root, "src")

if _src_dir not in sys.path:
    sys.path.insert(0, _src_dir)


class FakeClock:
    """Returns strictly increasing datetimes, one minute apart."""

    def __init__(self, start=datetime(2026, 3, 20, 9, 0)):
        self.current = start

    def __call__(self):
        self.current = self.current + timedelta(minutes=1)
        return self.current


@pytest.fixture
def clock():
    return FakeClock()
