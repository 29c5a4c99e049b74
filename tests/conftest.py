"""
Shared fixtures for temporal_tables tests.

Transactions of the in-memory database start one second apart, beginning
at T0, so expected periods can be written as T(0), T(1), ...
"""

import pytest

from temporal_tables.clock import SystemTime
from temporal_tables.storage.memory import InMemoryDatabase

from .helpers import TickingClock


@pytest.fixture
def ticker():
    return TickingClock()


@pytest.fixture
def system_time():
    return SystemTime()


@pytest.fixture
def db(ticker, system_time):
    return InMemoryDatabase(clock=system_time, now=ticker)
