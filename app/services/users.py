from __future__ import annotations

import asyncio
import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import AuthenticationFailed, Conflict, NotFound, ValidationError
from app.core.permissions import Role
from app.core.security import get_password_hash, verify_password
from app.core.settings import settings
from app.models.loan_application import OPEN_STATUSES, LoanApplication
from app.models.user import User
from app.schemas.users import UserUpsertRequest
from app.services import authz
from app.services import settings as settings_service
from app.services.audit import model_snapshot, record_audit_event
from app.services.branches import WILDCARD_LABEL, serialize_branches
from app.services.directory import DirectoryAuthenticator, DirectoryConfig, DirectoryResult, clean_username


logger = logging.getLogger(__name__)

_USER_AUDIT_FIELDS = ("username", "role", "branches", "display_name", "email")


async def get_user(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFound("User not found", details={"user_id": user_id})
    return user


async def get_user_by_username(db: AsyncSession, username: str) -> User | None:
    result = await db.execute(select(User).where(User.username == username))
    return result.scalar_one_or_none()


def _hash_or_raise(password: str) -> str:
    try:
        return get_password_hash(password)
    except ValueError as exc:
        raise ValidationError(str(exc), details={"field": "password"}) from exc


async def _local_login(db: AsyncSession, username: str, password: str) -> User:
    user = await get_user_by_username(db, username)
    if user is None:
        raise AuthenticationFailed("User is not registered", details={"reason": "unknown_user"})
    if not verify_password(password, user.hashed_password):
        raise AuthenticationFailed("Invalid username or password", details={"reason": "invalid_credentials"})
    return user


async def _directory_login(
    db: AsyncSession,
    username: str,
    raw_username: str,
    password: str,
    directory: DirectoryAuthenticator,
) -> User:
    config = DirectoryConfig.from_settings(await settings_service.get_app_settings(db))
    if not config.is_configured:
        result = DirectoryResult(success=False, fallback=True)
    else:
        try:
            result = await asyncio.wait_for(
                directory.bind(config.bind_identity(raw_username), password, config),
                timeout=settings.external_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Directory bind timed out for %s", username)
            result = DirectoryResult(success=False, error="Directory server did not respond in time")

    if not result.success:
        if result.fallback:
            raise AuthenticationFailed(
                "Directory is not configured; use local authentication",
                details={"reason": "directory_unconfigured", "fallback": True},
            )
        raise AuthenticationFailed(
            result.error or "Invalid username or password",
            details={"reason": "directory_rejected"},
        )

    user = await get_user_by_username(db, username)
    if user is not None:
        return user

    # First directory login registers the user; branches are assigned by an admin later.
    user = User(
        username=username,
        role=Role.OFFICER.value,
        branches="",
        display_name=result.attributes.get("displayName") or result.attributes.get("display_name"),
        email=result.attributes.get("mail") or result.attributes.get("email"),
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await get_user_by_username(db, username)
        if existing is None:
            raise
        return existing
    await db.refresh(user)
    logger.info("Auto-registered directory user %s", username)
    record_audit_event(
        actor_id=user.id,
        action="user.auto_registered",
        resource_type="user",
        resource_id=user.id,
        new_value={"username": username, "role": user.role},
    )
    return user


async def login(
    db: AsyncSession,
    username: str,
    password: str,
    mode: str,
    directory: DirectoryAuthenticator,
) -> User:
    cleaned = clean_username(username)
    if not cleaned:
        raise ValidationError("Username is required", details={"field": "username"})
    if mode == "local":
        return await _local_login(db, cleaned, password)
    return await _directory_login(db, cleaned, username.strip(), password, directory)


async def list_users(db: AsyncSession) -> list[User]:
    result = await db.execute(select(User).order_by(User.created_at.desc(), User.id.desc()))
    return list(result.scalars().all())


async def upsert_user(db: AsyncSession, payload: UserUpsertRequest, actor: User) -> User:
    authz.ensure(authz.can_manage_users(actor), "manage users")
    username = clean_username(payload.username)
    if not username:
        raise ValidationError("Username is required", details={"field": "username"})

    user = await get_user_by_username(db, username)
    before = model_snapshot(user, include=_USER_AUDIT_FIELDS) if user else None
    if user is None:
        user = User(username=username)
        db.add(user)
    user.role = Role.parse(payload.role).value
    user.branches = serialize_branches(payload.branches)
    if payload.display_name is not None:
        user.display_name = payload.display_name.strip() or None
    if payload.email is not None:
        user.email = str(payload.email)
    if payload.password:
        user.hashed_password = _hash_or_raise(payload.password)

    await db.commit()
    await db.refresh(user)
    record_audit_event(
        actor_id=actor.id,
        action="user.updated" if before else "user.created",
        resource_type="user",
        resource_id=user.id,
        old_value=before,
        new_value=model_snapshot(user, include=_USER_AUDIT_FIELDS),
    )
    return user


async def delete_user(db: AsyncSession, user_id: int, actor: User) -> None:
    authz.ensure(authz.can_manage_users(actor), "manage users")
    user = await get_user(db, user_id)
    if user.id == actor.id:
        raise ValidationError("You cannot delete your own account", details={"user_id": user_id})
    held = await db.execute(
        select(LoanApplication.status, func.count())
        .where(LoanApplication.assigned_to_id == user_id)
        .group_by(LoanApplication.status)
    )
    by_status = dict(held.all())
    if by_status:
        # Closed loans keep their assignee; open ones must be reassigned first.
        open_count = sum(count for status, count in by_status.items() if status in OPEN_STATUSES)
        raise Conflict(
            "User is still assigned to loan applications",
            details={
                "user_id": user_id,
                "reason": "holds_loans",
                "open": open_count,
                "closed": sum(by_status.values()) - open_count,
            },
        )
    before = model_snapshot(user, include=_USER_AUDIT_FIELDS)
    await db.delete(user)
    await db.commit()
    record_audit_event(
        actor_id=actor.id,
        action="user.deleted",
        resource_type="user",
        resource_id=user_id,
        old_value=before,
    )


async def change_password(db: AsyncSession, user_id: int, new_password: str, actor: User) -> None:
    authz.ensure(authz.can_manage_users(actor), "change passwords")
    user = await get_user(db, user_id)
    user.hashed_password = _hash_or_raise(new_password)
    await db.commit()
    record_audit_event(
        actor_id=actor.id,
        action="user.password_changed",
        resource_type="user",
        resource_id=user_id,
    )


async def ensure_admin_user(db: AsyncSession) -> User:
    """Seed the administrator account with access to every branch."""
    username = settings.seed_admin_username
    user = await get_user_by_username(db, username)
    if user is None:
        user = User(username=username)
        db.add(user)
    user.role = Role.ADMIN.value
    user.branches = WILDCARD_LABEL
    if settings.seed_admin_password and not user.hashed_password:
        user.hashed_password = get_password_hash(settings.seed_admin_password)
    await db.commit()
    await db.refresh(user)
    return user
