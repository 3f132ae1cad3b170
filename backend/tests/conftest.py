import pytest

from commitstreak.services.streak_service import StreakEngine
from fakes import (
    FakeClock,
    FakeGitHub,
    FakeUserDirectory,
    InMemoryDayBuckets,
    InMemoryStreaks,
)

USER_ID = "user-1"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def github(clock):
    return FakeGitHub(clock)


@pytest.fixture
def users():
    directory = FakeUserDirectory()
    directory.link(USER_ID, login="octocat")
    return directory


@pytest.fixture
def buckets():
    return InMemoryDayBuckets()


@pytest.fixture
def streaks():
    return InMemoryStreaks()


@pytest.fixture
def engine(users, buckets, streaks, clock, github):
    return StreakEngine(
        users=users,
        buckets=buckets,
        streaks=streaks,
        clock=clock,
        client_factory=github.client_factory(),
    )
