"""
Test configuration and fixtures
"""
import sys
from pathlib import Path

# Add src and the shared test helpers to Python path
project_root = Path(__file__).parent.parent
src_path = project_root / "src"
helpers_path = Path(__file__).parent / "restaking_vault_tests"

sys.path.insert(0, str(src_path))
sys.path.insert(0, str(helpers_path))

import pytest

from vault_test_utils import FakeClock, VaultHarness


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def harness(clock):
    h = VaultHarness(clock=clock)
    h.register(h.reward_x)
    return h


@pytest.fixture
def vault(harness):
    return harness.vault
