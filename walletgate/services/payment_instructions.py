# walletgate/services/payment_instructions.py
"""
Client for the upstream x402 payment-instructions service.

A payment instruction is a named set of payment requirements. Content
identifiers are mapped to an instruction so the payment gateway knows
what a payment unlocks. The upstream service owns all instruction state;
this module only calls it.

Configuration (walletgate/core/config.py), checked at first use:
- PAYMENT_INSTRUCTIONS_API_URL: Base URL of the service
- PAYMENT_INSTRUCTIONS_API_TOKEN: Bearer token
- UPSTREAM_TIMEOUT_SECONDS: Per-request timeout
"""
import logging
from typing import Any, Dict, Optional

import requests
from requests.exceptions import RequestException

from walletgate.api.models.payment import (
    ContentPrice,
    CreatedPaymentInstruction,
    CreatePaymentInstructionInput,
    PaymentInstruction,
    PaymentRequirement,
)
from walletgate.core.config import settings

logger = logging.getLogger(__name__)

# ERC-20 token contract addresses by currency and network
TOKEN_ADDRESSES: Dict[str, Dict[str, str]] = {
    "USDC": {
        "base": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        "base-sepolia": "0x036CbD53842c5426634e7929541eC2318f3dCF7e",
        "ethereum": "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
        "ethereum-sepolia": "0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238",
        "polygon": "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359",
        "polygon-amoy": "0x41E94Eb019C0762f9Bfcf9Fb1E58725BfB0e7582",
    },
}

# Decimals for tokens that don't use 18
TOKEN_DECIMALS = {
    "USDC": 6,
}
DEFAULT_TOKEN_DECIMALS = 18


class PaymentInstructionsConfigError(RuntimeError):
    """A required payment-instructions setting is missing."""


class UnknownTokenError(ValueError):
    """No contract address is known for a currency/network pair."""


class PaymentInstructionError(Exception):
    """
    The payment-instructions service answered with a non-2xx status.

    The message embeds status, status text and the raw response body
    unchanged so callers can tell upstream failures apart.
    """

    def __init__(
        self,
        action: str,
        status_code: int,
        status_text: str,
        body: str,
        operation: str,
        instruction_id: Optional[str] = None
    ):
        super().__init__(f"Failed to {action}: {status_code} {status_text} - {body}")
        self.status_code = status_code
        self.status_text = status_text
        self.body = body
        self.operation = operation
        self.instruction_id = instruction_id


def resolve_token(currency: str, network: str) -> str:
    """
    Get the ERC-20 contract address for a currency on a network.

    Raises:
        UnknownTokenError: If the pair is not in TOKEN_ADDRESSES
    """
    address = TOKEN_ADDRESSES.get(currency, {}).get(network)
    if not address:
        raise UnknownTokenError(f"Unknown token {currency} on network {network}")
    return address


def format_amount(amount: str, currency: str) -> str:
    """
    Render a smallest-unit integer amount as a human-readable decimal.

    Only used for descriptions; stored and transmitted amounts stay integer strings.

    Examples:
        format_amount("1000000", "USDC") -> "1"
        format_amount("1500000", "USDC") -> "1.5"
    """
    decimals = TOKEN_DECIMALS.get(currency, DEFAULT_TOKEN_DECIMALS)
    whole, remainder = divmod(int(amount), 10 ** decimals)

    if remainder == 0:
        return str(whole)

    fraction = str(remainder).rjust(decimals, "0").rstrip("0")
    return f"{whole}.{fraction}"


class PaymentInstructionsClient:
    """
    Thin typed client for /v3/x402/payment_instructions.

    Missing configuration is reported when the first request is made, not
    when the client is constructed. Errors are never retried here.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        auth_token: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        self._base_url = base_url
        self._auth_token = auth_token
        self._timeout = timeout

    @property
    def base_url(self) -> str:
        base_url = self._base_url or settings.PAYMENT_INSTRUCTIONS_API_URL
        if not base_url:
            raise PaymentInstructionsConfigError(
                "PAYMENT_INSTRUCTIONS_API_URL environment variable is required"
            )
        return base_url.rstrip("/")

    @property
    def auth_token(self) -> str:
        auth_token = self._auth_token or settings.PAYMENT_INSTRUCTIONS_API_TOKEN
        if not auth_token:
            raise PaymentInstructionsConfigError(
                "PAYMENT_INSTRUCTIONS_API_TOKEN environment variable is required"
            )
        return auth_token

    @property
    def timeout(self) -> float:
        if self._timeout is not None:
            return self._timeout
        return settings.UPSTREAM_TIMEOUT_SECONDS

    def _url(self, path: str) -> str:
        return f"{self.base_url}/v3/x402/payment_instructions{path}"

    def _request(
        self,
        method: str,
        path: str,
        action: str,
        operation: str,
        instruction_id: Optional[str] = None,
        json_body: Optional[Dict[str, Any]] = None
    ) -> requests.Response:
        url = self._url(path)
        headers = {"Authorization": f"Bearer {self.auth_token}"}
        if json_body is not None:
            headers["Content-Type"] = "application/json"

        try:
            response = requests.request(
                method,
                url,
                headers=headers,
                json=json_body,
                timeout=self.timeout
            )
        except RequestException as e:
            logger.error(f"Error calling payment instructions API ({method} {url}): {e}")
            raise

        if not response.ok:
            logger.error(
                f"Payment instructions API returned {response.status_code} for {method} {url}"
            )
            raise PaymentInstructionError(
                action=action,
                status_code=response.status_code,
                status_text=response.reason or "",
                body=response.text,
                operation=operation,
                instruction_id=instruction_id,
            )

        return response

    @staticmethod
    def _parse_instruction(response: requests.Response) -> PaymentInstruction:
        payload = response.json()
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict) or not data.get("id"):
            raise ValueError(f"Payment instruction response missing 'data.id': {payload}")
        return PaymentInstruction.model_validate(data)

    def create(self, instruction: CreatePaymentInstructionInput) -> PaymentInstruction:
        """
        Create a payment instruction. An empty requirements list is a free-access instruction.

        Raises:
            PaymentInstructionError: On a non-2xx response
            ValueError: If the response carries no instruction id
        """
        response = self._request(
            "POST",
            "",
            action="create payment instruction",
            operation="create",
            json_body=instruction.model_dump(exclude_none=True),
        )
        created = self._parse_instruction(response)
        logger.info(f"Created payment instruction {created.id} ({created.name})")
        return created

    def get(self, instruction_id: str) -> PaymentInstruction:
        """Fetch a payment instruction by id."""
        response = self._request(
            "GET",
            f"/{instruction_id}",
            action="get payment instruction",
            operation="get",
            instruction_id=instruction_id,
        )
        return self._parse_instruction(response)

    def map_content_id(self, instruction_id: str, content_id: str) -> None:
        """Bind a content identifier to a payment instruction."""
        self._request(
            "PUT",
            f"/{instruction_id}/cids/{content_id}",
            action="map CID to payment instruction",
            operation="map",
            instruction_id=instruction_id,
        )
        logger.info(f"Mapped content {content_id} to payment instruction {instruction_id}")

    def unmap_content_id(self, instruction_id: str, content_id: str) -> None:
        """Remove a content identifier from a payment instruction."""
        self._request(
            "DELETE",
            f"/{instruction_id}/cids/{content_id}",
            action="unmap CID from payment instruction",
            operation="unmap",
            instruction_id=instruction_id,
        )
        logger.info(f"Unmapped content {content_id} from payment instruction {instruction_id}")

    def delete(self, instruction_id: str) -> None:
        """
        Soft-delete a payment instruction.

        Upstream refuses while content ids are still mapped; that error is
        raised as-is.
        """
        self._request(
            "DELETE",
            f"/{instruction_id}",
            action="delete payment instruction",
            operation="delete",
            instruction_id=instruction_id,
        )
        logger.info(f"Deleted payment instruction {instruction_id}")


def create_content_payment_instruction(
    client: PaymentInstructionsClient,
    title: str,
    owner_address: str,
    content_id: str,
    price: ContentPrice
) -> CreatedPaymentInstruction:
    """
    Create a payment instruction for a piece of paid content and map the content id to it.

    Args:
        client: Payment instructions client
        title: Content title, used in the instruction name and description
        owner_address: Wallet that receives payment
        content_id: Content identifier to map
        price: Amount (smallest unit), currency and network

    Returns:
        CreatedPaymentInstruction with the instruction id and the smallest-unit price

    Raises:
        UnknownTokenError: Before any request, if the currency/network pair is unknown
        PaymentInstructionError: If create or map fails. A failed map leaves the
            instruction in place upstream; the error's instruction_id lets the
            caller delete it.
        RequestException: If create or map cannot reach the service. When the
            map step fails this way the exception gets an instruction_id too.
    """
    asset = resolve_token(price.currency, price.network)
    display_amount = format_amount(price.amount, price.currency)

    instruction = client.create(CreatePaymentInstructionInput(
        name=f"Payment for {title}",
        description=f"Access to feed entry: {title}",
        payment_requirements=[
            PaymentRequirement(
                pay_to=owner_address,
                network=price.network,
                asset=asset,
                max_amount_required=price.amount,
                description=f"{display_amount} {price.currency} on {price.network}",
            )
        ],
    ))

    try:
        client.map_content_id(instruction.id, content_id)
    except RequestException as e:
        # Transport errors carry no instruction id; attach it for the caller's rollback
        e.instruction_id = instruction.id
        raise

    return CreatedPaymentInstruction(piid=instruction.id, price=price.amount)


def map_free_content(
    client: PaymentInstructionsClient,
    content_id: str,
    free_instruction_id: Optional[str] = None
) -> Optional[str]:
    """
    Map free content to the shared free-access payment instruction.

    Returns:
        The free instruction id, or None if FREE_PAYMENT_INSTRUCTION_ID is not configured
    """
    if free_instruction_id is None:
        free_instruction_id = settings.FREE_PAYMENT_INSTRUCTION_ID
    if not free_instruction_id:
        logger.warning(f"FREE_PAYMENT_INSTRUCTION_ID not configured, content {content_id} left unmapped")
        return None

    client.map_content_id(free_instruction_id, content_id)
    return free_instruction_id


# Global client instance
_client: Optional[PaymentInstructionsClient] = None


def get_payment_instructions_client() -> PaymentInstructionsClient:
    """Get the process-wide payment instructions client."""
    global _client
    if _client is None:
        _client = PaymentInstructionsClient()
    return _client
