# walletgate/api/endpoints/auth.py
import logging

from fastapi import APIRouter, HTTPException
from redis.exceptions import RedisError

from walletgate.api.models.auth import NonceRequest, NonceResponse
from walletgate.core.config import settings
from walletgate.services.nonce_store import get_nonce_store
from walletgate.services.wallet_auth import build_sign_in_message, generate_nonce

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/nonce", response_model=NonceResponse)
def create_nonce(body: NonceRequest) -> NonceResponse:
    """
    Issue a sign-in nonce for a wallet.

    The client signs the returned message and sends it back in the
    x-message/x-signature headers. Requesting a new nonce invalidates any
    earlier one for the same wallet.

    Raises:
        HTTPException: 500 if the nonce could not be stored
    """
    wallet_address = body.wallet_address.lower()
    nonce = generate_nonce()
    ttl_seconds = settings.NONCE_TTL_SECONDS

    try:
        record = get_nonce_store().issue(wallet_address, nonce, ttl_seconds)
    except RedisError as e:
        logger.error(f"Failed to store nonce for {wallet_address}: {e}")
        raise HTTPException(
            status_code=500,
            detail="Failed to generate nonce"
        )

    logger.info(f"Issued nonce for {wallet_address}")
    return NonceResponse(
        nonce=nonce,
        message=build_sign_in_message(nonce),
        expiresAt=int(record.expires_at * 1000),
    )
