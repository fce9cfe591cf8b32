# tests/test_cron_status.py
from datetime import timedelta

import pytest

from tweetpulse.core.utils import utcnow
from tweetpulse.models.run_models import RunStatus
from tweetpulse.storage.cron_runs import (
    count_failed_runs_since,
    determine_status,
    get_last_successful_run,
    record_cron_run,
)


@pytest.mark.parametrize(
    "new_count,error_count,expected",
    [
        (0, 0, RunStatus.SUCCEEDED),
        (5, 0, RunStatus.SUCCEEDED),
        (3, 2, RunStatus.PARTIAL_SUCCESS),
        (0, 2, RunStatus.FAILED),
    ],
)
def test_determine_status(new_count, error_count, expected):
    assert determine_status(new_count, error_count) == expected


def test_last_success_and_recent_failures(session):
    now = utcnow()
    record_cron_run(
        session, "manual", ["a"], now - timedelta(hours=5), now - timedelta(hours=5), RunStatus.SUCCEEDED
    )
    latest = record_cron_run(
        session, "manual", ["a"], now - timedelta(hours=1), now, RunStatus.SUCCEEDED, new_count=4
    )
    record_cron_run(
        session, "manual", ["a"], now - timedelta(minutes=30), now, RunStatus.FAILED, error_count=1
    )
    record_cron_run(
        session, "manual", ["a"], now - timedelta(hours=6), now, RunStatus.FAILED, error_count=1
    )

    assert get_last_successful_run(session).id == latest.id
    assert count_failed_runs_since(session, now - timedelta(hours=2)) == 1
