import os
import sys

import pytest

# Make the shared test doubles importable as ``helpers``
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from helpers import FrozenClock  # noqa: E402


@pytest.fixture
def clock():
    return FrozenClock()
