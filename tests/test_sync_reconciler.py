from datetime import datetime, timezone

import httpx
import pytest
from sqlalchemy import func, select

from app.db.session import AsyncSessionLocal
from app.models.loan_application import LoanApplication
from app.services import loan_lifecycle
from app.services import settings as settings_service
from app.services.form_source import FormSourceClient, derive_verification, map_entry, map_submission
from app.services.sync_reconciler import SyncReconciler, sync_status

from conftest import make_loan, make_user

SYNC_TIME = datetime(2026, 5, 4, 10, 0, tzinfo=timezone.utc)


def _entry(entry_id: str, **fields) -> dict:
    entry = {
        "id": entry_id,
        "33": "Nino",
        "34": "Beridze",
        "35": "nino@example.com",
        "27": "599123456",
        "21": "Didube",
        "31": "01001012345",
        "37": "Verified",
        "date_created": "2026-05-01 08:15:00",
    }
    entry.update(fields)
    return entry


def _source(entries=None, *, status_code: int = 200, calls: list | None = None) -> FormSourceClient:
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        if status_code != 200:
            return httpx.Response(status_code)
        return httpx.Response(200, json={"total_count": len(entries or []), "entries": entries or []})

    return FormSourceClient(
        base_url="https://forms.example.test/wp-json/gf/v2",
        consumer_key="ck",
        consumer_secret="cs",
        form_id="4",
        transport=httpx.MockTransport(handler),
    )


def _reconciler(source: FormSourceClient) -> SyncReconciler:
    return SyncReconciler(session_factory=AsyncSessionLocal, source=source, clock=lambda: SYNC_TIME)


async def _loan_count(db) -> int:
    return (await db.execute(select(func.count(LoanApplication.id)))).scalar_one()


def test_map_entry_reads_form_fields():
    mapped = map_entry(_entry("7", **{"21": "", "37": ""}), default_branch="Main")
    assert mapped.wp_entry_id == "7"
    assert mapped.first_name == "Nino"
    assert mapped.mobile == "599123456"
    assert mapped.branch == "Main"
    assert mapped.verification_status is False
    assert mapped.created_at == datetime(2026, 5, 1, 8, 15, tzinfo=timezone.utc)


def test_map_entry_requires_id():
    with pytest.raises(ValueError):
        map_entry({"33": "Nino"})


def test_map_submission_synthesizes_entry_id():
    mapped = map_submission({"1.3": "Levan", "4": "555000111"})
    assert mapped.wp_entry_id.startswith("webhook-")
    assert mapped.first_name == "Levan"
    assert mapped.last_name == "Unknown"


@pytest.mark.parametrize(
    "signal, expected",
    [("Verified", True), ("წარმატებით შესრულდა", True), ("1", True), ("pending", False), ("", False)],
)
def test_derive_verification_keywords(signal, expected):
    assert derive_verification(signal, accept_any=False) is expected


def test_derive_verification_accept_any():
    assert derive_verification("pending", accept_any=True) is True
    assert derive_verification("  ", accept_any=True) is False


@pytest.mark.asyncio
async def test_sync_inserts_and_stamps_last_sync(db_session):
    calls: list = []
    result = await _reconciler(_source([_entry("101"), _entry("102", **{"33": "Giorgi"})], calls=calls)).run()

    assert result.as_dict() == {"synced": 2, "errors": 0}
    assert await _loan_count(db_session) == 2
    assert calls[0].url.params["paging[page_size]"] == "500"
    status = await sync_status(db_session)
    assert status["total_entries"] == 2
    assert status["last_sync_time"].replace(tzinfo=timezone.utc) == SYNC_TIME


@pytest.mark.asyncio
async def test_sync_is_idempotent(db_session):
    entries = [_entry("101"), _entry("102")]
    await _reconciler(_source(entries)).run()
    await _reconciler(_source(entries)).run()

    assert await _loan_count(db_session) == 2


@pytest.mark.asyncio
async def test_sync_preserves_staff_owned_fields(db_session):
    officer = await make_user(db_session, "officer", branches="Didube")
    working = await make_loan(
        db_session, wp_entry_id="201", branch="Didube", status="in_progress", assigned_to_id=officer.id
    )
    closed = await make_loan(db_session, wp_entry_id="202", branch="Didube", status="approved")

    await _reconciler(
        _source([
            _entry("201", **{"21": "Batumi", "33": "Updated"}),
            _entry("202", **{"21": "Batumi", "27": "577000000"}),
        ])
    ).run()

    working = await loan_lifecycle.get_loan(db_session, working.id)
    assert working.status == "in_progress"
    assert working.assigned_to_id == officer.id
    assert working.first_name == "Updated"
    assert working.branch == "Batumi"

    closed = await loan_lifecycle.get_loan(db_session, closed.id)
    assert closed.status == "approved"
    assert closed.branch == "Didube"
    assert closed.mobile == "577000000"


@pytest.mark.asyncio
async def test_one_bad_entry_does_not_abort_the_batch(db_session):
    result = await _reconciler(_source([_entry("301"), {"33": "No id"}, _entry("302")])).run()

    assert result.synced == 2
    assert result.errors == 1
    assert await _loan_count(db_session) == 2


@pytest.mark.asyncio
async def test_upstream_failure_skips_without_stamping(db_session):
    result = await _reconciler(_source(status_code=502)).run()

    assert result.as_dict() == {"synced": 0, "errors": 0}
    row = await settings_service.get_app_settings(db_session)
    assert row.last_sync_time is None


@pytest.mark.asyncio
async def test_unconfigured_source_returns_nothing():
    assert await FormSourceClient(base_url="", consumer_key=None, consumer_secret=None).fetch_entries() == []
