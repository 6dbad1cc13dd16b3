from datetime import datetime, timezone

import pytest

from app.services import loan_stats
from app.services.loan_visibility import Viewer

from conftest import make_loan, make_user

NOW = datetime(2026, 5, 15, 12, 0, tzinfo=timezone.utc)


def _at(year, month, day, hour=9):
    return datetime(year, month, day, hour, 0, tzinfo=timezone.utc)


async def _seed(db):
    await make_loan(db, branch="Didube", created_at=_at(2026, 5, 15, 8), details={"16": "Mortgage"})
    await make_loan(db, branch="Batumi", status="approved", created_at=_at(2026, 5, 3), details={"16": "Mortgage"})
    await make_loan(db, branch="Didube", status="rejected", created_at=_at(2026, 4, 20), details={"16": "Auto"})
    await make_loan(db, branch="Didube", status="approved", created_at=_at(2025, 12, 1), details={})


@pytest.mark.asyncio
async def test_stats_for_unrestricted_viewer(db_session):
    viewer = await make_user(db_session, "viewer", role="manager_viewer", branches="")
    await _seed(db_session)

    stats = await loan_stats.loan_stats(db_session, Viewer.from_user(viewer), now=NOW)

    assert stats.today == 1
    assert stats.month == 2
    assert stats.pending == 1
    assert stats.approved == 2
    assert stats.rejected == 1


@pytest.mark.asyncio
async def test_stats_are_branch_scoped(db_session):
    manager = await make_user(db_session, "manager", role="manager", branches="Didube")
    officer = await make_user(db_session, "fresh", branches="")
    await _seed(db_session)

    scoped = await loan_stats.loan_stats(db_session, Viewer.from_user(manager), now=NOW)
    assert scoped.month == 1
    assert scoped.approved == 1
    assert scoped.rejected == 1

    empty = await loan_stats.loan_stats(db_session, Viewer.from_user(officer), now=NOW)
    assert empty.model_dump() == {"today": 0, "month": 0, "pending": 0, "approved": 0, "rejected": 0}


@pytest.mark.asyncio
async def test_dashboard_report(db_session):
    await _seed(db_session)

    report = await loan_stats.dashboard_report(db_session, now=NOW)

    assert (report.today, report.this_month, report.last_month, report.this_year) == (1, 2, 1, 3)
    assert report.monthly_trend == 100.0
    assert len(report.monthly_data) == 12
    assert report.monthly_data[-1].month == "მაი"
    assert report.monthly_data[-1].count == 2
    assert report.monthly_data[-2].count == 1
    assert report.most_requested_product.product == "Mortgage"
    assert report.most_requested_product.count == 2
    assert {bucket.branch: bucket.count for bucket in report.branch_distribution} == {"Didube": 2, "Batumi": 1}
    labels = {bucket.status_key: bucket.status for bucket in report.status_distribution}
    assert labels["approved"] == "დამტკიცებული"


@pytest.mark.asyncio
async def test_dashboard_report_for_one_branch(db_session):
    await _seed(db_session)

    report = await loan_stats.dashboard_report(db_session, branch="Batumi", now=NOW)

    assert report.this_year == 1
    assert report.branch_distribution == []
    assert report.last_month == 0
    assert report.monthly_trend == 100.0
