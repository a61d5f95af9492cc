# walletgate/services/content_gateway.py
import time
import logging
from typing import Optional

import requests
from requests.exceptions import RequestException

from walletgate.core.config import settings

logger = logging.getLogger(__name__)


class ContentGatewayError(Exception):
    """The content gateway could not issue an access link."""


def create_private_access_link(content_id: str, expires: Optional[int] = None) -> str:
    """
    Requests a short-lived presigned URL for private content.

    Args:
        content_id: Content identifier (CID) of the private file
        expires: Link lifetime in seconds (default: ACCESS_LINK_EXPIRES_SECONDS)

    Returns:
        The presigned URL

    Raises:
        ContentGatewayError: If configuration is missing or the gateway rejects the request
        RequestException: If the HTTP request fails
    """
    token = settings.PAYMENT_INSTRUCTIONS_API_TOKEN
    api_url = settings.PAYMENT_INSTRUCTIONS_API_URL
    gateway = settings.CONTENT_GATEWAY_HOST

    if not token:
        raise ContentGatewayError("PAYMENT_INSTRUCTIONS_API_TOKEN environment variable is required")
    if not api_url:
        raise ContentGatewayError("PAYMENT_INSTRUCTIONS_API_URL environment variable is required")
    if not gateway:
        raise ContentGatewayError("CONTENT_GATEWAY_HOST environment variable is required")

    if expires is None:
        expires = settings.ACCESS_LINK_EXPIRES_SECONDS

    base_url = gateway if gateway.startswith("https://") else f"https://{gateway}"
    request_body = {
        "url": f"{base_url}/files/{content_id}",
        "date": int(time.time()),
        "expires": expires,
        "method": "GET",
    }
    endpoint = f"{api_url.rstrip('/')}/v3/files/private/download_link"

    try:
        response = requests.post(
            endpoint,
            json=request_body,
            headers={"Authorization": f"Bearer {token}"},
            timeout=settings.UPSTREAM_TIMEOUT_SECONDS
        )
    except RequestException as e:
        logger.error(f"Error creating access link for {content_id} ({endpoint}): {e}")
        raise

    if not response.ok:
        raise ContentGatewayError(
            f"Failed to create access link: {response.status_code} {response.reason} - {response.text}"
        )

    link = response.json().get("data")
    if not link:
        raise ContentGatewayError("Access link response missing 'data' field")

    logger.debug(f"Created access link for {content_id} valid for {expires}s")
    return link
