# walletgate/services/wallet_auth.py
"""
Wallet signature verification for challenge-response sign-in.

A client requests a nonce, signs the sign-in message with its wallet
(EIP-191 personal_sign, as done by MetaMask/WalletConnect), and sends
the message, signature, address and timestamp back. These functions
check that:
- the signature was produced by the claimed address
- the signature is recent
- the message follows the sign-in template exactly
- the embedded nonce is the one we issued

Verification never raises: callers get a VerificationResult and turn a
failure into a 401.
"""
import logging
import math
import re
import secrets
import string
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from eth_account import Account
from eth_account.messages import encode_defunct

from walletgate.core.config import settings
from walletgate.services.nonce_store import NonceStore

logger = logging.getLogger(__name__)

NONCE_LENGTH = 32
NONCE_ALPHABET = string.ascii_letters + string.digits

# "I am signing in to <product> at <ISO timestamp> with nonce: <nonce>"
SIGN_IN_TEMPLATE = "I am signing in to {product} at {timestamp} with nonce: {nonce}"
_TIMESTAMP_PATTERN = r"[0-9]{4}-[0-9]{2}-[0-9]{2}T[0-9]{2}:[0-9]{2}:[0-9]{2}(?:\.[0-9]+)?Z"
_NONCE_PATTERN = r"[a-zA-Z0-9]+"


class VerificationFailure(Enum):
    """Why a signed sign-in attempt was rejected."""
    INVALID_SIGNATURE = "invalid_signature"
    EXPIRED = "expired"
    INVALID_FORMAT = "invalid_format"
    NONCE_MISMATCH = "nonce_mismatch"
    NONCE_MISSING = "nonce_missing"


@dataclass(frozen=True)
class VerificationResult:
    success: bool
    error: Optional[str] = None
    reason: Optional[VerificationFailure] = None

    @classmethod
    def ok(cls) -> "VerificationResult":
        return cls(success=True)

    @classmethod
    def fail(cls, reason: VerificationFailure, error: str) -> "VerificationResult":
        return cls(success=False, error=error, reason=reason)


@dataclass(frozen=True)
class ParsedMessage:
    nonce: str
    timestamp: str


def _message_regex(product: str) -> "re.Pattern[str]":
    return re.compile(
        "I am signing in to " + re.escape(product)
        + " at (?P<timestamp>" + _TIMESTAMP_PATTERN + ")"
        + " with nonce: (?P<nonce>" + _NONCE_PATTERN + ")"
    )


def generate_nonce(length: int = NONCE_LENGTH) -> str:
    """Generate an unpredictable alphanumeric nonce."""
    return "".join(secrets.choice(NONCE_ALPHABET) for _ in range(length))


def format_message_timestamp(moment: datetime) -> str:
    """Render a datetime as ISO-8601 UTC with millisecond precision and a Z suffix."""
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def build_sign_in_message(
    nonce: str,
    issued_at: Optional[datetime] = None,
    product: Optional[str] = None
) -> str:
    """
    Build the message a wallet must sign to complete a challenge.

    Args:
        nonce: The nonce issued for this wallet
        issued_at: Timestamp embedded in the message (default: now, UTC)
        product: Product name in the statement. Uses config if not provided.
    """
    if issued_at is None:
        issued_at = datetime.now(timezone.utc)
    return SIGN_IN_TEMPLATE.format(
        product=product or settings.SIGN_IN_PRODUCT_NAME,
        timestamp=format_message_timestamp(issued_at),
        nonce=nonce,
    )


def parse_signed_message(message: str, product: Optional[str] = None) -> Optional[ParsedMessage]:
    """
    Extract the nonce and timestamp from a sign-in message.

    The whole message must match the template; anything else (different
    punctuation, extra text, another product name) is rejected.

    Returns:
        ParsedMessage, or None if the message does not match
    """
    match = _message_regex(product or settings.SIGN_IN_PRODUCT_NAME).fullmatch(message)
    if match is None:
        return None
    return ParsedMessage(nonce=match.group("nonce"), timestamp=match.group("timestamp"))


def verify_signature(message: str, signature: str, expected_address: str) -> bool:
    """
    Check that `signature` is a personal_sign signature over `message` by `expected_address`.

    Any error from the signature library counts as an invalid signature.
    """
    try:
        recovered = Account.recover_message(encode_defunct(text=message), signature=signature)
    except Exception as e:
        logger.warning(f"Signature recovery failed for {expected_address.lower()}: {e}")
        return False
    return recovered.lower() == expected_address.lower()


def verify_timestamp(
    timestamp: float,
    max_age_seconds: Optional[int] = None,
    now: Optional[float] = None
) -> bool:
    """
    Check that a signing timestamp (unix seconds) is not in the future and not older than max_age_seconds.
    """
    if max_age_seconds is None:
        max_age_seconds = settings.SIGNATURE_MAX_AGE_SECONDS
    if now is None:
        now = time.time()
    if not (math.isfinite(timestamp) and math.isfinite(now)):
        return False
    age = int(now) - int(timestamp)
    return 0 <= age <= max_age_seconds


def verify_wallet_signature(
    message: str,
    signature: str,
    wallet_address: str,
    timestamp: float,
    expected_nonce: Optional[str] = None,
    max_age_seconds: Optional[int] = None,
    now: Optional[float] = None
) -> VerificationResult:
    """
    Run every sign-in check, stopping at the first failure.

    Order: signature, freshness, message format, nonce binding (only when
    expected_nonce is given).

    Args:
        message: The exact text that was signed
        signature: 0x-prefixed 65-byte signature
        wallet_address: Address the caller claims to control
        timestamp: Unix timestamp (seconds) when the message was signed
        expected_nonce: Nonce from the nonce store, if the caller has one
        max_age_seconds: Freshness window. Uses config if not provided.
        now: Current unix time (overridable in tests)

    Returns:
        VerificationResult with success flag and error message
    """
    if max_age_seconds is None:
        max_age_seconds = settings.SIGNATURE_MAX_AGE_SECONDS

    if not verify_signature(message, signature, wallet_address):
        return VerificationResult.fail(
            VerificationFailure.INVALID_SIGNATURE,
            "Invalid signature: does not match wallet address"
        )

    if not verify_timestamp(timestamp, max_age_seconds, now):
        minutes = max_age_seconds // 60
        window = f"{minutes} minutes" if max_age_seconds % 60 == 0 else f"{max_age_seconds} seconds"
        return VerificationResult.fail(
            VerificationFailure.EXPIRED,
            f"Signature expired: must be signed within the last {window}"
        )

    parsed = parse_signed_message(message)
    if parsed is None:
        return VerificationResult.fail(VerificationFailure.INVALID_FORMAT, "Invalid message format")

    if expected_nonce is not None and parsed.nonce != expected_nonce:
        return VerificationResult.fail(
            VerificationFailure.NONCE_MISMATCH,
            "Invalid nonce: does not match expected value"
        )

    return VerificationResult.ok()


def verify_and_consume_nonce(
    store: NonceStore,
    message: str,
    signature: str,
    wallet_address: str,
    timestamp: float,
    now: Optional[float] = None
) -> VerificationResult:
    """
    Complete a sign-in challenge against the nonce store.

    The live nonce is only revoked after the signature checks pass, so a
    forged request cannot burn someone else's challenge.
    """
    record = store.fetch(wallet_address)
    if record is None:
        return VerificationResult.fail(
            VerificationFailure.NONCE_MISSING,
            "Invalid or expired nonce. Please request a new nonce"
        )

    result = verify_wallet_signature(
        message=message,
        signature=signature,
        wallet_address=wallet_address,
        timestamp=timestamp,
        expected_nonce=record.nonce,
        now=now,
    )
    if not result.success:
        logger.info(f"Sign-in rejected for {wallet_address.lower()}: {result.error}")
        return result

    store.revoke(wallet_address)
    logger.info(f"Sign-in challenge completed for {wallet_address.lower()}")
    return result
