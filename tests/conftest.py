"""Shared fixtures for HookGuard tests."""

import pytest


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep host environment flags out of config loading."""
    for name in ("HOOKS_TESTING_MODE", "HOOK_DEVELOPMENT", "HOOK_VERBOSE", "HOOKGUARD_CONFIG"):
        monkeypatch.delenv(name, raising=False)
