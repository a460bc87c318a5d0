"""Pytest configuration for all tests."""

from typing import List

import pytest

from src.relay.jules.models import PullRequest, Session, SessionOutput, Source
from src.relay.notify.sink import NotificationSink
from src.relay.session.models import SessionOutcome
from src.relay.store.memory import InMemoryCredentialStore


class RecordingSink(NotificationSink):
    """Sink that records every outcome it receives."""

    def __init__(self) -> None:
        self.outcomes: List[SessionOutcome] = []

    async def notify(self, outcome: SessionOutcome) -> None:
        self.outcomes.append(outcome)


def make_source(repo: str) -> Source:
    return Source(name=f"sources/github/{repo}", id=f"github/{repo}")


def make_session(
    session_id: str = "sess-1",
    pr_url: str = "",
    pr_title: str = "",
    title: str = "Fix the flaky test",
) -> Session:
    outputs = []
    if pr_url:
        outputs.append(
            SessionOutput(pull_request=PullRequest(url=pr_url, title=pr_title))
        )
    return Session(
        id=session_id,
        name=f"sessions/{session_id}",
        title=title,
        outputs=outputs,
    )


@pytest.fixture
def store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
