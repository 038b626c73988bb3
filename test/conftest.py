import pytest

from clearance.engine import StatusTransitionEngine
from clearance.locks import LocalPackageLocks

from fakes import FIXED_NOW, FakeActivityLog, FakeNotifier, FakeStore, FakeSyncer, make_package


@pytest.fixture
def events() -> list:
    return []


@pytest.fixture
def store(events):
    return FakeStore(events, make_package())


@pytest.fixture
def activity_log(events):
    return FakeActivityLog(events)


@pytest.fixture
def notifier(events):
    return FakeNotifier(events)


@pytest.fixture
def syncer(events):
    return FakeSyncer(events)


@pytest.fixture
def engine(store, activity_log, notifier, syncer):
    return StatusTransitionEngine(
        store=store,
        activity_log=activity_log,
        notifier=notifier,
        syncer=syncer,
        locks=LocalPackageLocks(),
        clock=lambda: FIXED_NOW,
    )
