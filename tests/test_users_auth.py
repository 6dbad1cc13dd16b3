import pytest
from sqlalchemy import select

from app.core.errors import AuthenticationFailed, Conflict, Forbidden, ValidationError
from app.core.security import get_password_hash
from app.models.loan_application import LoanApplication
from app.models.user import User
from app.schemas.settings import AppSettingsUpdate
from app.schemas.users import UserUpsertRequest
from app.services import settings as settings_service
from app.services import users
from app.services.directory import DirectoryResult, UnconfiguredDirectory

from conftest import FakeResult, build_user, entity_handler, make_loan, make_user

PASSWORD = "Password123!"


class _Directory:
    def __init__(self, result: DirectoryResult) -> None:
        self.result = result
        self.binds: list[str] = []

    async def bind(self, username, password, config):
        self.binds.append(username)
        return self.result

    async def test_connection(self, config):
        return self.result


async def _configure_directory(db, admin) -> None:
    await settings_service.update_app_settings(
        db, AppSettingsUpdate(ad_server="ldap.corp.local", ad_domain="corp.local"), admin
    )


@pytest.mark.asyncio
async def test_local_login_with_fake_session(fake_db):
    user = build_user(username="nino", hashed_password=get_password_hash(PASSWORD))
    fake_db.on_execute(entity_handler(User, FakeResult(scalar=user)))

    assert await users.login(fake_db, "nino", PASSWORD, "local", UnconfiguredDirectory()) is user
    with pytest.raises(AuthenticationFailed):
        await users.login(fake_db, "nino", "wrong-password", "local", UnconfiguredDirectory())


@pytest.mark.asyncio
async def test_local_login_unknown_user(db_session):
    with pytest.raises(AuthenticationFailed) as excinfo:
        await users.login(db_session, "ghost", PASSWORD, "local", UnconfiguredDirectory())
    assert excinfo.value.details["reason"] == "unknown_user"


@pytest.mark.asyncio
async def test_user_without_local_password_cannot_log_in_locally(db_session):
    await make_user(db_session, "domainonly")
    with pytest.raises(AuthenticationFailed):
        await users.login(db_session, "domainonly", PASSWORD, "local", UnconfiguredDirectory())


@pytest.mark.asyncio
async def test_domain_login_without_directory_signals_fallback(db_session):
    with pytest.raises(AuthenticationFailed) as excinfo:
        await users.login(db_session, "jdoe", PASSWORD, "domain", UnconfiguredDirectory())
    assert excinfo.value.details["fallback"] is True


@pytest.mark.asyncio
async def test_domain_login_auto_registers_officer(db_session):
    admin = await make_user(db_session, "admin", role="admin", branches="All")
    await _configure_directory(db_session, admin)
    directory = _Directory(
        DirectoryResult(success=True, attributes={"displayName": "John Doe", "mail": "jdoe@corp.local"})
    )

    user = await users.login(db_session, "jdoe@corp.local", PASSWORD, "domain", directory)

    assert user.username == "jdoe"
    assert user.role == "officer"
    assert user.branches == ""
    assert user.display_name == "John Doe"
    assert directory.binds == ["jdoe@corp.local"]

    again = await users.login(db_session, "jdoe", PASSWORD, "domain", directory)
    assert again.id == user.id
    assert directory.binds[-1] == "jdoe@corp.local"


@pytest.mark.asyncio
async def test_domain_login_rejected_by_directory(db_session):
    admin = await make_user(db_session, "admin", role="admin", branches="All")
    await _configure_directory(db_session, admin)
    directory = _Directory(DirectoryResult(success=False, error="Invalid credentials"))

    with pytest.raises(AuthenticationFailed):
        await users.login(db_session, "jdoe", "nope", "domain", directory)
    assert await users.get_user_by_username(db_session, "jdoe") is None


@pytest.mark.asyncio
async def test_upsert_user_creates_and_updates(db_session):
    admin = await make_user(db_session, "admin", role="admin", branches="All")

    created = await users.upsert_user(
        db_session,
        UserUpsertRequest(username="nino", role="manager", branches="*", password=PASSWORD),
        admin,
    )
    assert created.branches == "All"
    assert created.role == "manager"
    assert created.hashed_password

    updated = await users.upsert_user(
        db_session, UserUpsertRequest(username="nino", role="officer", branches="Didube, Vake"), admin
    )
    assert updated.id == created.id
    assert updated.branches == "Didube,Vake"
    assert updated.hashed_password == created.hashed_password


@pytest.mark.asyncio
async def test_only_full_admins_manage_users(db_session):
    editor = await make_user(db_session, "editor", role="admin_editor", branches="All")
    with pytest.raises(Forbidden):
        await users.upsert_user(db_session, UserUpsertRequest(username="x"), editor)


@pytest.mark.asyncio
async def test_short_password_is_a_validation_error(db_session):
    admin = await make_user(db_session, "admin", role="admin", branches="All")
    with pytest.raises(ValidationError):
        await users.upsert_user(db_session, UserUpsertRequest(username="nino", password="short"), admin)


@pytest.mark.asyncio
async def test_admin_cannot_delete_self(db_session):
    admin = await make_user(db_session, "admin", role="admin", branches="All")
    other = await make_user(db_session, "other")

    with pytest.raises(ValidationError):
        await users.delete_user(db_session, admin.id, admin)

    await users.delete_user(db_session, other.id, admin)
    assert await users.get_user_by_username(db_session, "other") is None


@pytest.mark.asyncio
async def test_user_holding_loans_cannot_be_deleted(db_session):
    admin = await make_user(db_session, "admin", role="admin", branches="All")
    officer = await make_user(db_session, "officer", branches="Didube")
    officer_id = officer.id
    open_loan = await make_loan(db_session, status="in_progress", assigned_to_id=officer_id)
    closed_loan = await make_loan(db_session, status="approved", assigned_to_id=officer_id)
    open_id, closed_id = open_loan.id, closed_loan.id

    with pytest.raises(Conflict) as excinfo:
        await users.delete_user(db_session, officer_id, admin)

    assert excinfo.value.details == {"user_id": officer_id, "reason": "holds_loans", "open": 1, "closed": 1}
    assert await users.get_user_by_username(db_session, "officer") is not None
    rows = await db_session.execute(
        select(LoanApplication.id, LoanApplication.assigned_to_id).where(
            LoanApplication.id.in_([open_id, closed_id])
        )
    )
    assert dict(rows.all()) == {open_id: officer_id, closed_id: officer_id}


@pytest.mark.asyncio
async def test_change_password_allows_local_login(db_session):
    admin = await make_user(db_session, "admin", role="admin", branches="All")
    officer = await make_user(db_session, "officer")

    await users.change_password(db_session, officer.id, "N3wPassword!", admin)

    logged_in = await users.login(db_session, "officer", "N3wPassword!", "local", UnconfiguredDirectory())
    assert logged_in.id == officer.id


@pytest.mark.asyncio
async def test_ensure_admin_user_seeds_wildcard_admin(db_session):
    admin = await users.ensure_admin_user(db_session)

    assert admin.username == "admin"
    assert admin.role == "admin"
    assert admin.branches == "All"
    logged_in = await users.login(db_session, "admin", "Password123!", "local", UnconfiguredDirectory())
    assert logged_in.id == admin.id
