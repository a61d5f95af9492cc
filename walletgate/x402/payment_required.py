# walletgate/x402/payment_required.py
"""
HTTP 402 Payment Required responses for paid content.

The body follows the x402 v1 shape: protocol version, an error message and
the list of accepted payment requirements. Requirements come from the
content's payment instruction; amounts are passed through untouched as
smallest-unit integer strings.
"""
from typing import List

from starlette.responses import JSONResponse
from x402 import PaymentRequirementsV1

from walletgate.api.models.payment import PaymentInstruction, PaymentRequirement

# x402 protocol constants
X402_VERSION = 1
PAYMENT_SCHEME = "exact"
MAX_TIMEOUT_SECONDS = 300  # 5 minutes


def to_x402_requirement(requirement: PaymentRequirement, resource: str) -> PaymentRequirementsV1:
    """
    Convert a stored payment requirement into an x402 `accepts` entry.

    Args:
        requirement: Requirement from the payment instruction
        resource: URL of the protected resource
    """
    return PaymentRequirementsV1(
        scheme=PAYMENT_SCHEME,
        network=requirement.network,
        max_amount_required=requirement.max_amount_required,
        resource=resource,
        description=requirement.description or "",
        mime_type="application/json",
        pay_to=requirement.pay_to,
        max_timeout_seconds=MAX_TIMEOUT_SECONDS,
        asset=requirement.asset,
        extra=None
    )


def create_402_response(
    instruction: PaymentInstruction,
    resource: str,
    error_message: str = "Payment required"
) -> JSONResponse:
    """
    Create an HTTP 402 Payment Required response.

    Args:
        instruction: Payment instruction attached to the content
        resource: URL of the protected resource
        error_message: Error message for the response

    Returns:
        JSONResponse with 402 status and payment details
    """
    accepts: List[PaymentRequirementsV1] = [
        to_x402_requirement(requirement, resource)
        for requirement in instruction.payment_requirements
    ]

    response_body = {
        "x402Version": X402_VERSION,
        "error": error_message,
        "paymentInstructionId": instruction.id,
        "accepts": [requirements.model_dump(by_alias=True) for requirements in accepts],
    }

    return JSONResponse(status_code=402, content=response_body)
