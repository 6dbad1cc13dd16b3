"""Client for the credit bureau check logs published by the intake site."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from app.core.errors import UpstreamUnavailable
from app.core.settings import settings


logger = logging.getLogger(__name__)

# The log post type has been published under several slugs; the first one that
# answers is used.
LOG_ENDPOINTS = ("creditinfo_logs", "creditinfo-logs", "creditinfo_log", "creditinfologs")
SUCCESS_KEYWORDS = ("verified", "success", "წარმატებით")
SUCCESS_LITERALS = ("1", "true")


def is_success_signal(value: Any) -> bool:
    text = "" if value is None else str(value).strip()
    if not text:
        return False
    lowered = text.lower()
    if lowered in SUCCESS_LITERALS:
        return True
    return any(keyword in lowered for keyword in SUCCESS_KEYWORDS)


def _rendered(value: Any) -> str:
    if isinstance(value, dict):
        return str(value.get("rendered") or "")
    return str(value or "")


def log_confirms(log: dict[str, Any], personal_id: str) -> bool:
    content = _rendered(log.get("content"))
    title = _rendered(log.get("title"))
    acf = log.get("acf") if isinstance(log.get("acf"), dict) else {}
    meta = log.get("meta") if isinstance(log.get("meta"), dict) else {}

    matches_id = (
        personal_id in title
        or personal_id in content
        or acf.get("personal_id") == personal_id
        or acf.get("customer_id") == personal_id
        or meta.get("personal_id") == personal_id
    )
    if not matches_id:
        return False
    return (
        is_success_signal(content)
        or acf.get("status") == "success"
        or acf.get("verified") is True
        or acf.get("verification_status") == "success"
        or meta.get("status") == "success"
    )


class VerificationSourceClient:
    def __init__(
        self,
        *,
        base_url: str | None = None,
        user: str | None = None,
        password: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url if base_url is not None else settings.verification_source_url or "").rstrip("/")
        self.user = user if user is not None else settings.verification_source_user
        self.password = password if password is not None else settings.verification_source_password
        self.timeout = timeout or settings.external_timeout_seconds
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self.user and self.password)

    async def lookup(self, personal_id: str) -> bool:
        if not self.is_configured:
            raise UpstreamUnavailable(
                "Verification source is not configured",
                details={"source": "verification_source"},
            )
        personal_id = (personal_id or "").strip()
        if not personal_id:
            return False

        last_error: Exception | None = None
        async with httpx.AsyncClient(
            timeout=self.timeout,
            auth=(self.user, self.password),
            transport=self._transport,
        ) as client:
            for endpoint in LOG_ENDPOINTS:
                try:
                    response = await client.get(
                        f"{self.base_url}/{endpoint}",
                        params={"search": personal_id, "per_page": 10},
                    )
                except httpx.HTTPError as exc:
                    last_error = exc
                    continue
                if not response.is_success:
                    continue
                try:
                    logs = response.json()
                except ValueError:
                    logger.warning("Verification source returned non-JSON from %s", endpoint)
                    return False
                if not isinstance(logs, list):
                    return False
                return any(log_confirms(log, personal_id) for log in logs if isinstance(log, dict))

        if last_error is not None:
            raise UpstreamUnavailable(
                "Verification source is unreachable",
                details={"source": "verification_source", "error": type(last_error).__name__},
            ) from last_error
        return False
