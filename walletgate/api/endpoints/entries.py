# walletgate/api/endpoints/entries.py
import logging
import time
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Request
from requests.exceptions import RequestException

from walletgate.api.models.entries import AccessLinkResponse, EntryCreateRequest, EntryResponse
from walletgate.services.content_gateway import ContentGatewayError, create_private_access_link
from walletgate.services.ledger import ContentEntry, get_ledger
from walletgate.services.payment_instructions import (
    PaymentInstructionError,
    PaymentInstructionsConfigError,
    UnknownTokenError,
    create_content_payment_instruction,
    get_payment_instructions_client,
    map_free_content,
)
from walletgate.x402.access import AccessDecision, decide_access, is_owner, issue_access_link
from walletgate.x402.payment_required import create_402_response
from walletgate.x402.wallet_auth import VerifiedWallet, optional_wallet_auth, require_wallet_auth

logger = logging.getLogger(__name__)

router = APIRouter()


def _entry_response(entry: ContentEntry) -> EntryResponse:
    return EntryResponse(
        id=entry.id,
        content_id=entry.content_id,
        owner_address=entry.owner_address,
        title=entry.title,
        is_free=entry.is_free,
        piid=entry.piid,
        price=entry.price,
    )


def _get_entry_or_404(entry_id: str) -> ContentEntry:
    entry = get_ledger().get_entry(entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Entry not found")
    return entry


def _rollback_instruction(instruction_id: str) -> None:
    """Delete an instruction whose content mapping failed."""
    try:
        get_payment_instructions_client().delete(instruction_id)
        logger.info(f"Rolled back unmapped payment instruction {instruction_id}")
    except (PaymentInstructionError, RequestException) as e:
        logger.error(f"Failed to roll back payment instruction {instruction_id}, it is orphaned upstream: {e}")


def _issue_link(entry: ContentEntry, decision: AccessDecision) -> AccessLinkResponse:
    try:
        link = issue_access_link(entry, decision, create_private_access_link)
    except (ContentGatewayError, RequestException) as e:
        logger.error(f"Failed to create access link for entry {entry.id}: {e}")
        raise HTTPException(
            status_code=502,
            detail=f"Failed to create access link: {e}"
        )

    return AccessLinkResponse(
        url=link.url,
        expires_at=int(time.time()) + link.expires_in,
        access=decision.value,
    )


@router.post("", response_model=EntryResponse, status_code=201)
def create_entry(
    body: EntryCreateRequest,
    wallet: VerifiedWallet = Depends(require_wallet_auth)
) -> EntryResponse:
    """
    Publish a content entry owned by the authenticated wallet.

    Paid entries get their own payment instruction with the owner as payee;
    free entries are mapped to the shared free instruction when configured.

    Raises:
        HTTPException: 400 for unknown tokens, 500 for missing configuration,
            502 when the payment instructions service fails
    """
    entry_id = str(uuid.uuid4())
    title = body.title or f"Entry {entry_id}"
    client = get_payment_instructions_client()
    piid: Optional[str] = None
    price: Optional[str] = "0"

    if not body.is_free:
        try:
            created = create_content_payment_instruction(
                client, title, wallet.address, body.content_id, body.price
            )
        except UnknownTokenError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except PaymentInstructionsConfigError as e:
            logger.error(f"Payment instructions not configured: {e}")
            raise HTTPException(status_code=500, detail=str(e))
        except PaymentInstructionError as e:
            logger.error(f"Failed to create payment instruction for entry {entry_id}: {e}")
            if e.operation == "map" and e.instruction_id:
                _rollback_instruction(e.instruction_id)
            raise HTTPException(
                status_code=502,
                detail=f"Failed to create payment instruction: {e}"
            )
        except RequestException as e:
            logger.error(f"Payment instructions service unreachable for entry {entry_id}: {e}")
            instruction_id = getattr(e, "instruction_id", None)
            if instruction_id:
                _rollback_instruction(instruction_id)
            raise HTTPException(
                status_code=502,
                detail="Payment instructions service unavailable"
            )

        piid, price = created.piid, created.price
        logger.info(
            f"Created paid payment instruction {piid} for entry {entry_id}: "
            f"{body.price.amount} {body.price.currency} on {body.price.network}"
        )
    else:
        try:
            piid = map_free_content(client, body.content_id)
        except (PaymentInstructionError, PaymentInstructionsConfigError, RequestException) as e:
            # Free content stays servable without a mapping
            logger.warning(f"Continuing free entry {entry_id} without payment instruction: {e}")

    entry = ContentEntry(
        id=entry_id,
        content_id=body.content_id,
        owner_address=wallet.address.lower(),
        title=body.title,
        is_free=body.is_free,
        piid=piid,
        price=price,
    )
    get_ledger().add_entry(entry)
    return _entry_response(entry)


@router.delete("/{entry_id}")
def delete_entry(
    entry_id: str = Path(..., description="Entry id"),
    wallet: VerifiedWallet = Depends(require_wallet_auth)
):
    """
    Remove an entry and unmap its content id from its payment instruction.

    Raises:
        HTTPException: 404 if missing, 403 if the wallet is not the owner,
            502 if the payment instructions service fails
    """
    entry = _get_entry_or_404(entry_id)
    if not is_owner(entry, wallet.address):
        raise HTTPException(status_code=403, detail="Only the entry owner can delete it")

    if entry.piid:
        try:
            get_payment_instructions_client().unmap_content_id(entry.piid, entry.content_id)
        except (PaymentInstructionError, RequestException) as e:
            logger.error(f"Failed to unmap content {entry.content_id} from {entry.piid}: {e}")
            raise HTTPException(
                status_code=502,
                detail=f"Failed to unmap content from payment instruction: {e}"
            )

    get_ledger().remove_entry(entry_id)
    logger.info(f"Entry {entry_id} deleted by {wallet.address.lower()}")
    return {"id": entry_id, "deleted": True}


@router.get("/{entry_id}/access", response_model=AccessLinkResponse)
def get_entry_access(
    request: Request,
    entry_id: str = Path(..., description="Entry id"),
    wallet: Optional[VerifiedWallet] = Depends(optional_wallet_auth)
):
    """
    Serve an entry, or answer 402 with its payment requirements.

    Returns:
        AccessLinkResponse when the entry is free, owned or purchased;
        an x402 Payment Required response otherwise
    """
    entry = _get_entry_or_404(entry_id)
    requester = wallet.address if wallet else None
    decision = decide_access(entry, requester, get_ledger())

    if decision is AccessDecision.UNPAID:
        try:
            instruction = get_payment_instructions_client().get(entry.piid)
        except (PaymentInstructionError, PaymentInstructionsConfigError, RequestException) as e:
            logger.error(f"Failed to load payment instruction {entry.piid} for entry {entry_id}: {e}")
            raise HTTPException(
                status_code=502,
                detail=f"Failed to load payment requirements: {e}"
            )
        logger.info(f"Entry {entry_id} requires payment (piid {entry.piid})")
        return create_402_response(instruction, resource=str(request.url))

    return _issue_link(entry, decision)


@router.post("/{entry_id}/access-link", response_model=AccessLinkResponse)
def create_entry_access_link(
    entry_id: str = Path(..., description="Entry id"),
    wallet: VerifiedWallet = Depends(require_wallet_auth)
) -> AccessLinkResponse:
    """
    Create a short-lived link for an entry the authenticated wallet may read.

    Raises:
        HTTPException: 404 if missing, 403 if the wallet has not purchased the entry
    """
    entry = _get_entry_or_404(entry_id)
    decision = decide_access(entry, wallet.address, get_ledger())

    if decision is AccessDecision.UNPAID:
        raise HTTPException(status_code=403, detail="You must purchase this entry to access it")

    return _issue_link(entry, decision)
