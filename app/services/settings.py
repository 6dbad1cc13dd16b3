from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import UpstreamUnavailable, ValidationError
from app.core.settings import settings as app_config
from app.models.app_settings import SETTINGS_ROW_ID, AppSettings
from app.models.user import User
from app.schemas.settings import PASSWORD_MASK, AppSettingsOut, AppSettingsUpdate, PublicSettings
from app.services import authz
from app.services.audit import model_snapshot, record_audit_event
from app.services.directory import DirectoryAuthenticator, DirectoryConfig


logger = logging.getLogger(__name__)

DEFAULT_SYNC_INTERVAL = 5


async def get_app_settings(db: AsyncSession) -> AppSettings:
    row = await db.get(AppSettings, SETTINGS_ROW_ID)
    if row is None:
        row = AppSettings(
            id=SETTINGS_ROW_ID,
            sync_interval=DEFAULT_SYNC_INTERVAL,
            ad_server="",
            ad_port=389,
            ad_base_dn="",
            ad_domain="",
            ad_bind_user="",
            ad_group_filter="",
            logo_url="",
            favicon_url="",
        )
        db.add(row)
        await db.flush()
        await db.refresh(row)
    return row


def settings_view(row: AppSettings) -> AppSettingsOut:
    """Settings as shown to admins; the bind password never leaves the service."""
    fields = {name: getattr(row, name) for name in AppSettingsOut.model_fields if name != "ad_bind_password"}
    return AppSettingsOut(**fields, ad_bind_password=PASSWORD_MASK if row.ad_bind_password else "")


def _audit_snapshot(row: AppSettings) -> dict:
    return model_snapshot(row, include=[
        "sync_interval",
        "ad_server",
        "ad_port",
        "ad_base_dn",
        "ad_domain",
        "ad_bind_user",
        "ad_group_filter",
        "logo_url",
        "favicon_url",
    ])


async def update_app_settings(
    db: AsyncSession,
    payload: AppSettingsUpdate,
    actor: User,
) -> tuple[AppSettings, bool]:
    """Apply an admin update; the flag tells the caller to reschedule the sync timer."""
    authz.ensure(authz.can_manage_settings(actor), "manage settings")
    row = await get_app_settings(db)
    before = _audit_snapshot(row)
    old_interval = row.sync_interval

    changes = payload.model_dump(exclude_unset=True)
    for field, value in changes.items():
        if field == "ad_bind_password":
            if value == PASSWORD_MASK:
                continue
            row.ad_bind_password = value or None
            continue
        if value is None:
            if field == "sync_interval":
                raise ValidationError("sync_interval cannot be null", details={"field": field})
            value = 389 if field == "ad_port" else ""
        setattr(row, field, value.strip() if isinstance(value, str) else value)

    await db.commit()
    await db.refresh(row)
    after = _audit_snapshot(row)
    if changes.get("ad_bind_password", PASSWORD_MASK) != PASSWORD_MASK:
        after["ad_bind_password"] = "<changed>"
    record_audit_event(
        actor_id=actor.id,
        action="settings.updated",
        resource_type="app_settings",
        resource_id=row.id,
        old_value=before,
        new_value=after,
    )
    return row, row.sync_interval != old_interval


async def public_settings(db: AsyncSession) -> PublicSettings:
    row = await get_app_settings(db)
    return PublicSettings(logo_url=row.logo_url or "", favicon_url=row.favicon_url or "")


async def stamp_last_sync(db: AsyncSession, when: datetime) -> None:
    row = await get_app_settings(db)
    row.last_sync_time = when
    await db.flush()


async def test_directory_connection(
    db: AsyncSession,
    directory: DirectoryAuthenticator,
    actor: User,
) -> str:
    authz.ensure(authz.can_manage_settings(actor), "test directory connection")
    config = DirectoryConfig.from_settings(await get_app_settings(db))
    if not config.is_configured:
        raise ValidationError("Directory server is not configured", details={"field": "ad_server"})
    try:
        result = await asyncio.wait_for(
            directory.test_connection(config), timeout=app_config.external_timeout_seconds
        )
    except asyncio.TimeoutError as exc:
        raise UpstreamUnavailable(
            "Directory server did not respond in time",
            details={"source": "directory", "server": config.server},
        ) from exc
    if not result.success:
        raise UpstreamUnavailable(
            result.error or "Directory connection failed",
            details={"source": "directory", "server": config.server},
        )
    logger.info("Directory connection test succeeded for %s:%s", config.server, config.port)
    return "Connection established"
