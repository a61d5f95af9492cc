# walletgate/x402/access.py
"""
Access control for paid content.

Decides, per request, how a content entry may be served to a requester:
- FREE: the entry has no payment instruction (or is marked free)
- OWNER: the requester owns the entry
- PURCHASED: the ledger has a transaction for this entry and requester
- UNPAID: the requester must go through an x402 payment first

Decisions are recomputed on every request; purchases are written by the
payment settlement path, which does not notify this module.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from walletgate.core.config import settings
from walletgate.services.ledger import ContentEntry, PurchaseLedger

logger = logging.getLogger(__name__)


class AccessDecision(Enum):
    FREE = "free"
    OWNER = "owner"
    PURCHASED = "purchased"
    UNPAID = "unpaid"


@dataclass(frozen=True)
class AccessLink:
    url: str
    expires_in: int
    decision: AccessDecision


class AccessDeniedError(Exception):
    """Raised when a link is requested for content the requester has not paid for."""


def is_owner(entry: ContentEntry, requester_address: Optional[str]) -> bool:
    """Case-insensitive owner check."""
    if not requester_address:
        return False
    return requester_address.lower() == entry.owner_address.lower()


def decide_access(
    entry: ContentEntry,
    requester_address: Optional[str],
    ledger: PurchaseLedger
) -> AccessDecision:
    """
    Classify a request for an entry.

    Args:
        entry: The requested content entry
        requester_address: Verified wallet of the requester, or None if anonymous
        ledger: Purchase ledger, consulted synchronously on every call

    Returns:
        The AccessDecision, checked in order FREE, OWNER, PURCHASED, UNPAID
    """
    if entry.is_free or not entry.piid:
        return AccessDecision.FREE

    if is_owner(entry, requester_address):
        return AccessDecision.OWNER

    if requester_address and ledger.has_purchase(entry.id, requester_address):
        return AccessDecision.PURCHASED

    return AccessDecision.UNPAID


def is_servable(decision: AccessDecision) -> bool:
    return decision is not AccessDecision.UNPAID


def issue_access_link(
    entry: ContentEntry,
    decision: AccessDecision,
    link_issuer: Callable[[str, int], str],
    expires_in: Optional[int] = None
) -> AccessLink:
    """
    Get a short-lived signed URL for an entry the requester may access.

    Args:
        entry: The content entry
        decision: Result of decide_access for this request
        link_issuer: Callable(content_id, expires_seconds) -> presigned URL
        expires_in: Link lifetime in seconds. Uses config if not provided.

    Raises:
        AccessDeniedError: If the decision is UNPAID
    """
    if not is_servable(decision):
        raise AccessDeniedError("You must purchase this entry to access it")

    if expires_in is None:
        expires_in = settings.ACCESS_LINK_EXPIRES_SECONDS

    url = link_issuer(entry.content_id, expires_in)
    logger.info(f"Issued access link for entry {entry.id} ({decision.value}, {expires_in}s)")
    return AccessLink(url=url, expires_in=expires_in, decision=decision)
