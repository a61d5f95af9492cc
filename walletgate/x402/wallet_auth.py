# walletgate/x402/wallet_auth.py
"""
Wallet signature authentication for FastAPI routes.

Clients prove control of a wallet by sending these headers:
- x-wallet-address: 0x-prefixed address
- x-signature: 0x-prefixed 65-byte signature
- x-message: the signed sign-in message (plain or base64)
- x-timestamp: unix timestamp (seconds) of signing
- x-chain-id: optional chain id used to pick the payment network

`require_wallet_auth` rejects requests without valid headers;
`optional_wallet_auth` lets anonymous requests through but still
rejects partial or invalid credentials.
"""
import base64
import binascii
import logging
import re
import time
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request
from redis.exceptions import RedisError

from walletgate.services.nonce_store import get_nonce_store
from walletgate.services.wallet_auth import (
    SIGN_IN_TEMPLATE,
    parse_signed_message,
    verify_and_consume_nonce,
)

logger = logging.getLogger(__name__)

WALLET_ADDRESS_HEADER = "x-wallet-address"
SIGNATURE_HEADER = "x-signature"
MESSAGE_HEADER = "x-message"
TIMESTAMP_HEADER = "x-timestamp"
CHAIN_ID_HEADER = "x-chain-id"

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
SIGNATURE_RE = re.compile(r"^0x[0-9a-fA-F]{130}$")

# Chain id -> network name used in payment requirements
CHAIN_NETWORKS = {
    "8453": "base",
    "84532": "base-sepolia",
    "1": "ethereum",
    "11155111": "ethereum-sepolia",
    "137": "polygon",
    "80002": "polygon-amoy",
}
DEFAULT_NETWORK = "base"

_MESSAGE_PREFIX = SIGN_IN_TEMPLATE.split("{", 1)[0]


@dataclass(frozen=True)
class VerifiedWallet:
    address: str
    network: str
    verified_at: float


def decode_message_header(value: str) -> str:
    """Return the sign-in message, decoding it first if the client sent base64."""
    if value.startswith(_MESSAGE_PREFIX):
        return value
    try:
        decoded = base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return value
    return decoded if decoded.startswith(_MESSAGE_PREFIX) else value


def _bad_request(message: str) -> HTTPException:
    return HTTPException(status_code=400, detail={"error": "Bad Request", "message": message})


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(status_code=401, detail={"error": "Unauthorized", "message": message})


def authenticate_wallet(request: Request, required: bool) -> Optional[VerifiedWallet]:
    """
    Verify the wallet headers on a request.

    Returns:
        VerifiedWallet, or None if the request carried no auth headers and auth is optional

    Raises:
        HTTPException: 400 for missing/malformed fields, 401 for failed verification
    """
    headers = request.headers
    wallet_address = headers.get(WALLET_ADDRESS_HEADER)
    signature = headers.get(SIGNATURE_HEADER)
    message = headers.get(MESSAGE_HEADER)
    raw_timestamp = headers.get(TIMESTAMP_HEADER)

    if not any([wallet_address, signature, message, raw_timestamp]):
        if required:
            raise _unauthorized(
                "Wallet signature authentication required. Please provide x-wallet-address, "
                "x-signature, x-message, and x-timestamp headers."
            )
        return None

    if not all([wallet_address, signature, message, raw_timestamp]):
        raise _bad_request(
            "When using signature authentication, all headers are required: "
            "x-wallet-address, x-signature, x-message, x-timestamp"
        )

    if not ADDRESS_RE.match(wallet_address):
        raise _bad_request("Invalid wallet address format. Expected 42-character hex string starting with 0x")

    if not SIGNATURE_RE.match(signature):
        raise _bad_request("Invalid signature format. Expected 132-character hex string starting with 0x (65 bytes)")

    try:
        timestamp = int(raw_timestamp)
    except ValueError:
        raise _bad_request("Invalid timestamp. Expected unix timestamp in seconds")

    message = decode_message_header(message)
    if parse_signed_message(message) is None:
        raise _bad_request(
            'Invalid message format. Expected: "I am signing in to {product} at {ISO_TIMESTAMP} with nonce: {NONCE}"'
        )

    try:
        result = verify_and_consume_nonce(
            get_nonce_store(),
            message=message,
            signature=signature,
            wallet_address=wallet_address,
            timestamp=timestamp,
        )
    except RedisError as e:
        logger.error(f"Nonce store unavailable while authenticating {wallet_address.lower()}: {e}")
        raise HTTPException(status_code=503, detail="Authentication temporarily unavailable")

    if not result.success:
        raise _unauthorized(result.error or "Signature verification failed")

    network = CHAIN_NETWORKS.get(headers.get(CHAIN_ID_HEADER, ""), DEFAULT_NETWORK)
    return VerifiedWallet(address=wallet_address, network=network, verified_at=time.time())


def require_wallet_auth(request: Request) -> VerifiedWallet:
    """FastAPI dependency: the request must carry a valid wallet signature."""
    return authenticate_wallet(request, required=True)


def optional_wallet_auth(request: Request) -> Optional[VerifiedWallet]:
    """FastAPI dependency: verify wallet headers if present."""
    return authenticate_wallet(request, required=False)
