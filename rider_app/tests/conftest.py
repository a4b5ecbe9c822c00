"""Shared pytest fixtures: fake platform location API, inline sender, manual clock."""

import sys
import os

# Add repo root to path so the rider_app package imports without installation
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

import pytest

from fakes import FakePlatform, InlineExecutor, ManualClock
from rider_app.pinger import BestEffortSender


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def sender():
    return BestEffortSender(executor=InlineExecutor())
