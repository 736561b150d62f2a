import pytest

from clock_actions import StepTimeouts
from fakes import FakeDriver, FakeTotp


@pytest.fixture
def fake_driver():
    return FakeDriver()


@pytest.fixture
def fake_totp():
    return FakeTotp()


@pytest.fixture
def timeouts():
    return StepTimeouts()
