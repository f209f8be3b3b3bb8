"""Chat content moderation.

Clients and suppliers negotiate anonymously until an order exists, so any
attempt to move the conversation off the platform (contact details, links,
social profiles, "pay me directly" phrasing) is blocked before the message is
stored. ``analyze`` is pure: callers decide what to do with the result.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Tuple


REASON_EMAIL = "email"
REASON_PHONE = "phone"
REASON_EXTERNAL_LINK = "external_link"
REASON_SOCIAL_HANDLE = "social_handle"
REASON_CONTACT_KEYWORD = "contact_keyword"

_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
_PHONE_PATTERN = re.compile(r"(?:\+?55\s?)?(?:\(?\d{2}\)?\s?)?(?:9\d{4}|\d{4})[-\s]?\d{4}")
_URL_PATTERN = re.compile(r"(?:https?://|www\.)\S+", re.IGNORECASE)
_SOCIAL_PATTERN = re.compile(
    r"(?:instagram|insta|telegram|tiktok|facebook|linkedin|discord|skype)\s*[:@]?\s*@?[a-z0-9._-]{3,}"
)

CONTACT_KEYWORDS: Tuple[str, ...] = (
    "whatsapp",
    "zap",
    "telefone",
    "celular",
    "me liga",
    "chama no",
    "contato",
    "email",
    "e-mail",
    "arroba",
    "instagram",
    "telegram",
    "fora da plataforma",
    "pagamento por fora",
    "pix direto",
    "transferencia direta",
)


@dataclass(frozen=True)
class ModerationResult:
    blocked: bool
    reasons: Tuple[str, ...] = ()

    def to_payload(self) -> dict:
        return {"blocked": self.blocked, "reasons": list(self.reasons)}


def analyze(text: str | None) -> ModerationResult:
    content = str(text or "")
    if not content.strip():
        return ModerationResult(blocked=False)

    lowered = content.lower()
    reasons: list[str] = []

    def _flag(reason: str) -> None:
        if reason not in reasons:
            reasons.append(reason)

    if _EMAIL_PATTERN.search(content):
        _flag(REASON_EMAIL)
    if _PHONE_PATTERN.search(content):
        _flag(REASON_PHONE)
    if _URL_PATTERN.search(content):
        _flag(REASON_EXTERNAL_LINK)
    if _SOCIAL_PATTERN.search(lowered):
        _flag(REASON_SOCIAL_HANDLE)
    if any(keyword in lowered for keyword in CONTACT_KEYWORDS):
        _flag(REASON_CONTACT_KEYWORD)

    return ModerationResult(blocked=bool(reasons), reasons=tuple(reasons))
