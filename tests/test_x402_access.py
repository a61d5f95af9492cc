# tests/test_x402_access.py
"""
Unit tests for content access decisions and 402 responses.
"""
import json
import pytest
from unittest.mock import MagicMock

from x402 import PaymentRequirementsV1

from walletgate.api.models.payment import PaymentInstruction, PaymentRequirement
from walletgate.services.ledger import ContentEntry, InMemoryLedger
from walletgate.x402.access import (
    AccessDecision,
    AccessDeniedError,
    decide_access,
    is_owner,
    is_servable,
    issue_access_link,
)
from walletgate.x402.payment_required import X402_VERSION, create_402_response, to_x402_requirement

OWNER = "0xAAAA000000000000000000000000000000000001"
BUYER = "0xBBBB000000000000000000000000000000000002"
STRANGER = "0xCCCC000000000000000000000000000000000003"


def paid_entry(**overrides) -> ContentEntry:
    fields = dict(
        id="entry-1",
        content_id="bafycid",
        owner_address=OWNER.lower(),
        title="Premium",
        is_free=False,
        piid="pi-123",
        price="1000000",
    )
    fields.update(overrides)
    return ContentEntry(**fields)


@pytest.fixture
def ledger():
    return InMemoryLedger()


class TestIsOwner:
    """Test owner comparison."""

    def test_case_insensitive(self):
        """Checksum and lowercase forms of the owner match."""
        entry = paid_entry()
        assert is_owner(entry, OWNER) is True
        assert is_owner(entry, OWNER.upper().replace("0X", "0x")) is True

    def test_anonymous_is_not_owner(self):
        """No requester, no ownership."""
        assert is_owner(paid_entry(), None) is False
        assert is_owner(paid_entry(), "") is False


class TestDecideAccess:
    """Test decision precedence."""

    def test_free_flag(self, ledger):
        """Entries marked free are free even with a piid."""
        assert decide_access(paid_entry(is_free=True), None, ledger) is AccessDecision.FREE

    def test_no_piid_is_free(self, ledger):
        """Entries without a payment instruction are free."""
        assert decide_access(paid_entry(piid=None), STRANGER, ledger) is AccessDecision.FREE

    def test_owner(self, ledger):
        """The owner never pays for their own entry."""
        assert decide_access(paid_entry(), OWNER, ledger) is AccessDecision.OWNER

    def test_owner_wins_over_purchase(self, ledger):
        """An owner who also has a purchase record is classified as owner."""
        ledger.record_purchase("entry-1", OWNER)
        assert decide_access(paid_entry(), OWNER, ledger) is AccessDecision.OWNER

    def test_purchased(self, ledger):
        """A recorded purchase grants access."""
        ledger.record_purchase("entry-1", BUYER)
        assert decide_access(paid_entry(), BUYER.lower(), ledger) is AccessDecision.PURCHASED

    def test_purchase_is_per_entry(self, ledger):
        """A purchase of another entry does not count."""
        ledger.record_purchase("entry-2", BUYER)
        assert decide_access(paid_entry(), BUYER, ledger) is AccessDecision.UNPAID

    def test_anonymous_unpaid(self, ledger):
        """Anonymous requesters must pay for paid entries."""
        assert decide_access(paid_entry(), None, ledger) is AccessDecision.UNPAID

    def test_ledger_not_consulted_for_anonymous(self):
        """Without a requester there is nothing to look up."""
        ledger = MagicMock()
        decide_access(paid_entry(), None, ledger)
        ledger.has_purchase.assert_not_called()

    def test_purchase_visible_on_next_request(self, ledger):
        """Decisions are recomputed, so a new purchase takes effect immediately."""
        entry = paid_entry()
        assert decide_access(entry, BUYER, ledger) is AccessDecision.UNPAID
        ledger.record_purchase(entry.id, BUYER)
        assert decide_access(entry, BUYER, ledger) is AccessDecision.PURCHASED

    def test_servable(self):
        """Only unpaid is not servable."""
        assert [d for d in AccessDecision if not is_servable(d)] == [AccessDecision.UNPAID]


class TestIssueAccessLink:
    """Test link issuance."""

    def test_issues_link(self):
        """The issuer is called with the content id and lifetime."""
        issuer = MagicMock(return_value="https://gateway.example.com/signed")

        link = issue_access_link(paid_entry(), AccessDecision.PURCHASED, issuer, expires_in=30)

        issuer.assert_called_once_with("bafycid", 30)
        assert link.url == "https://gateway.example.com/signed"
        assert link.expires_in == 30
        assert link.decision is AccessDecision.PURCHASED

    def test_unpaid_refused(self):
        """No link is requested for unpaid content."""
        issuer = MagicMock()

        with pytest.raises(AccessDeniedError, match="You must purchase this entry to access it"):
            issue_access_link(paid_entry(), AccessDecision.UNPAID, issuer)
        issuer.assert_not_called()


class TestPaymentRequiredResponse:
    """Test the x402 response body."""

    def test_402_body(self):
        """Requirements are exposed in x402 form with the amount untouched."""
        instruction = PaymentInstruction(
            id="pi-123",
            name="Payment for Premium",
            payment_requirements=[
                PaymentRequirement(
                    pay_to=OWNER,
                    network="base",
                    asset="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
                    max_amount_required="1000000",
                    description="1 USDC on base",
                )
            ],
        )

        response = create_402_response(instruction, resource="https://api.example.com/entries/entry-1")
        body = json.loads(response.body)

        assert response.status_code == 402
        assert body["x402Version"] == X402_VERSION
        assert body["error"] == "Payment required"
        assert body["paymentInstructionId"] == "pi-123"
        assert len(body["accepts"]) == 1
        accept = body["accepts"][0]
        assert accept["scheme"] == "exact"
        assert accept["maxAmountRequired"] == "1000000"
        assert accept["payTo"] == OWNER
        assert accept["resource"] == "https://api.example.com/entries/entry-1"
        assert accept["description"] == "1 USDC on base"

    def test_requirement_uses_x402_model(self):
        """Accepts entries are built as x402 v1 requirements and dumped with camelCase aliases."""
        requirement = PaymentRequirement(
            pay_to=OWNER,
            network="polygon-amoy",
            asset="0x41E94Eb019C0762f9Bfcf9Fb1E58725BfB0e7582",
            max_amount_required="250000",
        )

        converted = to_x402_requirement(requirement, resource="https://api.example.com/entries/entry-2")
        dumped = converted.model_dump(by_alias=True)

        assert isinstance(converted, PaymentRequirementsV1)
        assert dumped["network"] == "polygon-amoy"
        assert dumped["maxAmountRequired"] == "250000"
        assert dumped["maxTimeoutSeconds"] == 300
        assert dumped["mimeType"] == "application/json"
