from __future__ import annotations

import logging
from typing import Iterable

from .base import BaseDBManager
from ..models.fraud import BlockedEmailDomain

logger = logging.getLogger(__name__)

# Disposable / temporary email providers rejected at signup
DEFAULT_BLOCKED_EMAIL_DOMAINS: tuple[str, ...] = (
    "10minutemail.com", "tempmail.com", "tempmail.net", "guerrillamail.com",
    "guerrillamail.org", "mailinator.com", "throwaway.email", "temp-mail.org",
    "fakeinbox.com", "getnada.com", "mohmal.com", "tempail.com", "dispostable.com",
    "mailnesia.com", "mintemail.com", "tempr.email", "discard.email", "discardmail.com",
    "spamgourmet.com", "mytrashmail.com", "mt2009.com", "thankyou2010.com",
    "spam4.me", "grr.la", "sharklasers.com", "yopmail.com", "yopmail.fr",
    "cool.fr.nf", "jetable.fr.nf", "courriel.fr.nf", "moncourrier.fr.nf",
    "monemail.fr.nf", "monmail.fr.nf", "hide.biz.st", "mymail.infos.st",
    "maildrop.cc", "mailsac.com", "emailondeck.com", "tempinbox.com",
    "fakemailgenerator.com", "throwawaymail.com", "trashmail.com", "trashmail.net",
    "trashmail.org", "trashemail.de", "wegwerfmail.de", "wegwerfmail.net",
    "wegwerfmail.org", "spambox.us", "spamfree24.org",
)


async def seed_blocked_email_domains(
    db: BaseDBManager,
    domains: Iterable[str] = DEFAULT_BLOCKED_EMAIL_DOMAINS,
    reason: str = "disposable",
) -> int:
    """
    Idempotently insert the blocklist. Returns how many domains were new.
    """
    inserted = 0
    for domain in domains:
        entry = BlockedEmailDomain(domain=domain.strip().lower(), reason=reason)
        if await db.upsert_blocked_email_domain(entry):
            inserted += 1
    logger.info("Blocked email domains seeded: %s new", inserted)
    return inserted
