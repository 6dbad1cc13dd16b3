import asyncio

import pytest
from sqlalchemy import text

from app.core.errors import Forbidden, UpstreamUnavailable, ValidationError
from app.schemas.settings import PASSWORD_MASK, AppSettingsUpdate
from app.services import settings as settings_service
from app.services.directory import DirectoryResult

from conftest import make_user


class _Directory:
    def __init__(self, result: DirectoryResult | None = None, delay: float = 0) -> None:
        self.result = result or DirectoryResult(success=True)
        self.delay = delay
        self.configs = []

    async def bind(self, username, password, config):
        return self.result

    async def test_connection(self, config):
        self.configs.append(config)
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.result


@pytest.mark.asyncio
async def test_settings_row_is_created_with_defaults(db_session):
    row = await settings_service.get_app_settings(db_session)
    again = await settings_service.get_app_settings(db_session)

    assert row is again
    assert row.sync_interval == 5
    assert row.ad_port == 389
    assert settings_service.settings_view(row).ad_bind_password == ""


@pytest.mark.asyncio
async def test_update_reports_interval_change_and_masks_password(db_session):
    admin = await make_user(db_session, "admin", role="admin", branches="All")

    row, changed = await settings_service.update_app_settings(
        db_session,
        AppSettingsUpdate(sync_interval=15, ad_server=" ldap.corp.local ", ad_bind_password="s3cret"),
        admin,
    )

    assert changed is True
    assert row.ad_server == "ldap.corp.local"
    assert row.ad_bind_password == "s3cret"
    assert settings_service.settings_view(row).ad_bind_password == PASSWORD_MASK

    row, changed = await settings_service.update_app_settings(
        db_session, AppSettingsUpdate(sync_interval=15, ad_bind_password=PASSWORD_MASK), admin
    )
    assert changed is False
    assert row.ad_bind_password == "s3cret"


@pytest.mark.asyncio
async def test_bind_password_is_encrypted_at_rest(db_session):
    admin = await make_user(db_session, "admin", role="admin", branches="All")
    await settings_service.update_app_settings(db_session, AppSettingsUpdate(ad_bind_password="s3cret"), admin)

    raw = await db_session.execute(text("SELECT ad_bind_password FROM app_settings"))
    stored = raw.scalar_one()
    assert b"s3cret" not in bytes(stored)


@pytest.mark.asyncio
async def test_only_admins_update_settings(db_session):
    manager = await make_user(db_session, "manager", role="manager", branches="All")
    with pytest.raises(Forbidden):
        await settings_service.update_app_settings(db_session, AppSettingsUpdate(sync_interval=10), manager)


def test_sync_interval_bounds():
    with pytest.raises(ValueError):
        AppSettingsUpdate(sync_interval=0)
    with pytest.raises(ValueError):
        AppSettingsUpdate(sync_interval=61)


@pytest.mark.asyncio
async def test_public_settings(db_session):
    admin = await make_user(db_session, "admin", role="admin_editor", branches="All")
    await settings_service.update_app_settings(
        db_session, AppSettingsUpdate(logo_url="https://cdn.example.test/logo.svg"), admin
    )

    public = await settings_service.public_settings(db_session)

    assert public.logo_url == "https://cdn.example.test/logo.svg"
    assert public.favicon_url == ""


@pytest.mark.asyncio
async def test_directory_connection_outcomes(db_session, monkeypatch):
    admin = await make_user(db_session, "admin", role="admin", branches="All")

    with pytest.raises(ValidationError):
        await settings_service.test_directory_connection(db_session, _Directory(), admin)

    await settings_service.update_app_settings(
        db_session, AppSettingsUpdate(ad_server="ldap.corp.local", ad_domain="corp.local"), admin
    )
    directory = _Directory()
    message = await settings_service.test_directory_connection(db_session, directory, admin)
    assert message == "Connection established"
    assert directory.configs[0].server == "ldap.corp.local"

    with pytest.raises(UpstreamUnavailable):
        await settings_service.test_directory_connection(
            db_session, _Directory(DirectoryResult(success=False, error="bind failed")), admin
        )

    monkeypatch.setattr(settings_service.app_config, "external_timeout_seconds", 0.01)
    with pytest.raises(UpstreamUnavailable):
        await settings_service.test_directory_connection(db_session, _Directory(delay=1), admin)
