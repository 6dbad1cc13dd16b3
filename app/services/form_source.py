from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx

from app.core.errors import UpstreamUnavailable
from app.core.settings import settings
from app.services import loan_details as fields
from app.services.verification_source import is_success_signal


logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 500


@dataclass(slots=True)
class MappedEntry:
    wp_entry_id: str
    first_name: str
    last_name: str
    email: str
    mobile: str
    branch: str
    details: dict[str, Any]
    verification_status: bool | None = None
    created_at: datetime | None = None


def _first(entry: dict[str, Any], *keys: str, default: str = "") -> str:
    for key in keys:
        value = entry.get(key)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return default


def _parse_created(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).strip())
    except ValueError:
        return None
    # The form source reports timestamps in UTC without an offset.
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def derive_verification(signal: Any, *, accept_any: bool | None = None) -> bool:
    """Verification flag from the form's credit bureau status field.

    Keyword matching is the default; ``VERIFICATION_ACCEPT_ANY_VALUE`` restores
    the looser "any non-empty value" behaviour.
    """
    if accept_any is None:
        accept_any = settings.verification_accept_any_value
    if accept_any:
        return bool(str(signal or "").strip())
    return is_success_signal(signal)


def map_entry(entry: dict[str, Any], *, default_branch: str | None = None) -> MappedEntry:
    entry_id = entry.get("id")
    if entry_id is None or str(entry_id).strip() == "":
        raise ValueError("Form entry has no id")
    return MappedEntry(
        wp_entry_id=str(entry_id).strip(),
        first_name=_first(entry, fields.FIELD_FIRST_NAME, "first_name", default="Unknown"),
        last_name=_first(entry, fields.FIELD_LAST_NAME, "last_name", default="Unknown"),
        email=_first(entry, fields.FIELD_EMAIL, "email"),
        mobile=_first(entry, fields.FIELD_MOBILE, "phone", "mobile"),
        branch=_first(
            entry, fields.FIELD_BRANCH, "branch", default=default_branch or settings.default_branch_label
        ),
        details=dict(entry),
        verification_status=derive_verification(entry.get(fields.FIELD_VERIFICATION)),
        created_at=_parse_created(entry.get("date_created")),
    )


def map_submission(payload: dict[str, Any], *, default_branch: str | None = None) -> MappedEntry:
    """Mapping for submissions pushed to the webhook, which use the form's own field ids."""
    entry_id = _first(payload, "entry_id", "id") or f"webhook-{uuid.uuid4().hex}"
    return MappedEntry(
        wp_entry_id=entry_id,
        first_name=_first(payload, "1.3", "first_name", "1", default="Unknown"),
        last_name=_first(payload, "1.6", "last_name", "2", default="Unknown"),
        email=_first(payload, "3", "email"),
        mobile=_first(payload, "4", "phone", "mobile"),
        branch=_first(payload, "5", "branch", default=default_branch or settings.default_branch_label),
        details=dict(payload),
    )


class FormSourceClient:
    def __init__(
        self,
        *,
        base_url: str | None = None,
        consumer_key: str | None = None,
        consumer_secret: str | None = None,
        form_id: str | None = None,
        page_size: int | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url if base_url is not None else settings.form_source_url or "").rstrip("/")
        self.consumer_key = consumer_key if consumer_key is not None else settings.form_source_consumer_key
        self.consumer_secret = (
            consumer_secret if consumer_secret is not None else settings.form_source_consumer_secret
        )
        self.form_id = form_id or settings.form_source_form_id
        self.page_size = min(page_size or settings.form_source_page_size, MAX_PAGE_SIZE)
        self.timeout = timeout or settings.external_timeout_seconds
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self.consumer_key and self.consumer_secret)

    async def fetch_entries(self) -> list[dict[str, Any]]:
        if not self.is_configured:
            logger.info("Form source not configured, skipping fetch")
            return []
        url = f"{self.base_url}/forms/{self.form_id}/entries"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                auth=(self.consumer_key, self.consumer_secret),
                transport=self._transport,
            ) as client:
                response = await client.get(url, params={"paging[page_size]": self.page_size})
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamUnavailable(
                "Form source request failed",
                details={"source": "form_source", "error": type(exc).__name__},
            ) from exc

        entries = payload.get("entries") if isinstance(payload, dict) else payload
        if not isinstance(entries, list):
            return []
        return [entry for entry in entries if isinstance(entry, dict)]
