# tests/test_auth_api.py
import base64
import time
import pytest
from unittest.mock import patch, MagicMock
from fastapi.testclient import TestClient

import redis
from eth_account import Account
from eth_account.messages import encode_defunct

from walletgate.main import app
from walletgate.services.ledger import InMemoryLedger
from walletgate.services.nonce_store import InMemoryNonceStore
from walletgate.services.wallet_auth import build_sign_in_message

client = TestClient(app)

SIGNER = Account.from_key("0x" + "33" * 32)
OTHER = Account.from_key("0x" + "44" * 32)


def signed_headers(store, account=SIGNER, nonce="testNonce123", encode_message=False):
    """Issue a nonce in the store and return a complete set of auth headers for it."""
    store.issue(account.address, nonce, 300)
    message = build_sign_in_message(nonce)
    signature = account.sign_message(encode_defunct(text=message)).signature
    if encode_message:
        message = base64.b64encode(message.encode()).decode()
    return {
        "x-wallet-address": account.address,
        "x-signature": "0x" + bytes(signature).hex(),
        "x-message": message,
        "x-timestamp": str(int(time.time())),
    }


class TestNonceEndpoint:
    """Test suite for POST /api/v1/auth/nonce."""

    def setup_method(self):
        self.store = InMemoryNonceStore(sweep_interval_seconds=3600)

    def teardown_method(self):
        self.store.shutdown()

    def test_issue_nonce(self):
        """A nonce is issued, stored under the lowercase address and embedded in the message."""
        with patch("walletgate.api.endpoints.auth.get_nonce_store", return_value=self.store):
            before_ms = int(time.time() * 1000)
            response = client.post("/api/v1/auth/nonce", json={"wallet_address": SIGNER.address})

        assert response.status_code == 200
        data = response.json()
        assert len(data["nonce"]) == 32
        assert data["message"].startswith("I am signing in to Grapevine at ")
        assert data["message"].endswith(f"with nonce: {data['nonce']}")
        assert before_ms + 299_000 <= data["expiresAt"] <= before_ms + 301_000
        assert self.store.fetch(SIGNER.address.lower()).nonce == data["nonce"]
        assert data["expiresAt"] == int(self.store.fetch(SIGNER.address).expires_at * 1000)

    def test_new_nonce_replaces_old(self):
        """Requesting twice keeps only the latest nonce."""
        with patch("walletgate.api.endpoints.auth.get_nonce_store", return_value=self.store):
            first = client.post("/api/v1/auth/nonce", json={"wallet_address": SIGNER.address}).json()
            second = client.post("/api/v1/auth/nonce", json={"wallet_address": SIGNER.address}).json()

        assert first["nonce"] != second["nonce"]
        assert self.store.fetch(SIGNER.address).nonce == second["nonce"]

    def test_invalid_address(self):
        """Malformed addresses are rejected by validation."""
        response = client.post("/api/v1/auth/nonce", json={"wallet_address": "0x1234"})
        assert response.status_code == 422

    def test_store_failure(self):
        """A store outage is reported as a server error."""
        broken = MagicMock()
        broken.issue.side_effect = redis.exceptions.ConnectionError("down")

        with patch("walletgate.api.endpoints.auth.get_nonce_store", return_value=broken):
            response = client.post("/api/v1/auth/nonce", json={"wallet_address": SIGNER.address})

        assert response.status_code == 500
        assert response.json()["detail"] == "Failed to generate nonce"


class TestWalletAuthHeaders:
    """Test the wallet signature dependency through the access-link route."""

    def setup_method(self):
        self.store = InMemoryNonceStore(sweep_interval_seconds=3600)
        self.ledger = InMemoryLedger()
        self.patchers = [
            patch("walletgate.x402.wallet_auth.get_nonce_store", return_value=self.store),
            patch("walletgate.api.endpoints.entries.get_ledger", return_value=self.ledger),
        ]
        for p in self.patchers:
            p.start()

    def teardown_method(self):
        for p in self.patchers:
            p.stop()
        self.store.shutdown()

    def test_missing_headers(self):
        """No headers on a protected route is 401."""
        response = client.post("/api/v1/entries/missing/access-link")
        assert response.status_code == 401
        assert response.json()["detail"]["error"] == "Unauthorized"

    def test_partial_headers(self):
        """Some but not all headers is 400."""
        headers = signed_headers(self.store)
        del headers["x-timestamp"]

        response = client.post("/api/v1/entries/missing/access-link", headers=headers)

        assert response.status_code == 400
        assert "all headers are required" in response.json()["detail"]["message"]

    @pytest.mark.parametrize("header,value", [
        ("x-wallet-address", "0x1234"),
        ("x-signature", "0xDEADBEEF"),
        ("x-timestamp", "yesterday"),
        ("x-message", "hello"),
    ])
    def test_malformed_headers(self, header, value):
        """Malformed fields are rejected before verification."""
        headers = signed_headers(self.store)
        headers[header] = value

        response = client.post("/api/v1/entries/missing/access-link", headers=headers)

        assert response.status_code == 400
        assert self.store.fetch(SIGNER.address) is not None

    def test_valid_signature_reaches_route(self):
        """A valid signature passes auth; the unknown entry then 404s."""
        response = client.post("/api/v1/entries/missing/access-link", headers=signed_headers(self.store))
        assert response.status_code == 404

    def test_base64_message(self):
        """Base64-encoded messages are accepted."""
        headers = signed_headers(self.store, encode_message=True)
        response = client.post("/api/v1/entries/missing/access-link", headers=headers)
        assert response.status_code == 404

    def test_replay_rejected(self):
        """A signed challenge can only be used once."""
        headers = signed_headers(self.store)

        first = client.post("/api/v1/entries/missing/access-link", headers=headers)
        second = client.post("/api/v1/entries/missing/access-link", headers=headers)

        assert first.status_code == 404
        assert second.status_code == 401
        assert second.json()["detail"]["message"] == "Invalid or expired nonce. Please request a new nonce"

    def test_signature_from_other_wallet(self):
        """A signature by another key is 401 and does not consume the nonce."""
        headers = signed_headers(self.store)
        message = headers["x-message"]
        headers["x-signature"] = "0x" + bytes(OTHER.sign_message(encode_defunct(text=message)).signature).hex()

        response = client.post("/api/v1/entries/missing/access-link", headers=headers)

        assert response.status_code == 401
        assert response.json()["detail"]["message"] == "Invalid signature: does not match wallet address"
        assert self.store.fetch(SIGNER.address) is not None

    def test_stale_timestamp(self):
        """Signatures older than the freshness window are rejected."""
        headers = signed_headers(self.store)
        headers["x-timestamp"] = str(int(time.time()) - 600)

        response = client.post("/api/v1/entries/missing/access-link", headers=headers)

        assert response.status_code == 401
        assert "Signature expired" in response.json()["detail"]["message"]

    def test_nonce_store_unavailable(self):
        """A store outage during verification is 503."""
        headers = signed_headers(self.store)
        broken = MagicMock()
        broken.fetch.side_effect = redis.exceptions.ConnectionError("down")

        with patch("walletgate.x402.wallet_auth.get_nonce_store", return_value=broken):
            response = client.post("/api/v1/entries/missing/access-link", headers=headers)

        assert response.status_code == 503


class TestHealth:

    def test_root(self):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"
