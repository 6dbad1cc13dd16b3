"""Typed read access to the raw form entry stored on ``LoanApplication.details``.

The entry is kept verbatim; its keys are the form's numeric field ids, which
are site-specific, so only the fields the service reasons about are exposed.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Mapping


FIELD_BRANCH = "21"
FIELD_MOBILE = "27"
FIELD_AMOUNT = "14"
FIELD_PRODUCT = "16"
FIELD_PERSONAL_ID = "31"
FIELD_FIRST_NAME = "33"
FIELD_LAST_NAME = "34"
FIELD_EMAIL = "35"
FIELD_VERIFICATION = "37"


def coerce_details(raw: Any) -> dict[str, Any]:
    """Accept a mapping or a legacy JSON-encoded string; anything else is empty."""
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, (bytes, str)):
        try:
            decoded = json.loads(raw or "{}")
        except ValueError:
            return {}
        return decoded if isinstance(decoded, dict) else {}
    return {}


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


@dataclass(frozen=True, slots=True)
class LoanDetails:
    raw: dict[str, Any]

    @classmethod
    def from_raw(cls, raw: Any) -> "LoanDetails":
        return cls(raw=coerce_details(raw))

    def get(self, key: str, default: Any = None) -> Any:
        return self.raw.get(key, default)

    @property
    def personal_id(self) -> str:
        return _text(self.raw.get(FIELD_PERSONAL_ID))

    @property
    def product(self) -> str | None:
        return _text(self.raw.get(FIELD_PRODUCT)) or None

    @property
    def amount(self) -> str | None:
        return _text(self.raw.get(FIELD_AMOUNT)) or None

    @property
    def verification_signal(self) -> str:
        return _text(self.raw.get(FIELD_VERIFICATION))

    def personal_id_ends_with(self, suffix: str) -> bool:
        personal_id = self.personal_id
        return bool(personal_id) and personal_id.endswith(suffix)
