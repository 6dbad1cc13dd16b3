from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable


WILDCARD_TOKENS = frozenset({"*", "all"})
WILDCARD_LABEL = "All"


@dataclass(frozen=True, slots=True)
class BranchSet:
    """Branches a user is scoped to, as stored on ``User.branches``."""

    names: tuple[str, ...] = ()
    wildcard: bool = False

    def __bool__(self) -> bool:
        return self.wildcard or bool(self.names)

    def __iter__(self):
        return iter(self.names)


def _is_wildcard(token: str) -> bool:
    return token.strip().lower() in WILDCARD_TOKENS


def parse_branches(raw: str | Iterable[str] | BranchSet | None) -> BranchSet:
    if isinstance(raw, BranchSet):
        return raw
    if raw is None:
        return BranchSet()
    tokens = raw.split(",") if isinstance(raw, str) else list(raw)
    names: list[str] = []
    wildcard = False
    for token in tokens:
        cleaned = str(token).strip()
        if not cleaned:
            continue
        if _is_wildcard(cleaned):
            wildcard = True
            continue
        if cleaned not in names:
            names.append(cleaned)
    return BranchSet(names=tuple(names), wildcard=wildcard)


def has_all_branches(branches: str | Iterable[str] | BranchSet | None) -> bool:
    return parse_branches(branches).wildcard


def branch_matches(branches: str | Iterable[str] | BranchSet | None, loan_branch: str | None) -> bool:
    """Claim eligibility check.

    Besides exact names, a configured branch matches when the loan's branch
    contains it ("Didube" vs "Didube Branch Office") or when it contains the
    first word of the loan's branch. This is a loose heuristic and similarly
    named branches can collide.
    """
    parsed = parse_branches(branches)
    if parsed.wildcard:
        return True
    target = (loan_branch or "").strip().lower()
    if not target:
        return False
    first_word = target.split()[0]
    for name in parsed.names:
        candidate = name.lower()
        if candidate == target or candidate in target or first_word in candidate:
            return True
    return False


def serialize_branches(branches: str | Iterable[str] | BranchSet | None) -> str:
    parsed = parse_branches(branches)
    if parsed.wildcard:
        return WILDCARD_LABEL
    return ",".join(parsed.names)
