"""CommissionService: invoice.paid commissions, refund reversals, referral linking"""
import logging
from datetime import datetime, timedelta, timezone

import pytest

from mocks import MockBillingStore, invoice_payload
from schemas.stripe_events import ChargeObject, InvoiceObject
from services.commission_service import CommissionService, compute_commission


def _referred_store(rate=0.25, blocked=False, referral_status="signed_up"):
    store = MockBillingStore()
    store.add_affiliate("aff-1", commission_rate=rate, is_blocked=blocked)
    referral = store.add_referral("aff-1", customer_id="cus_1", status=referral_status)
    return store, referral


def _invoice(**overrides) -> InvoiceObject:
    return InvoiceObject.model_validate(invoice_payload(**overrides))


def _charge(invoice="in_1", amount_refunded=11900) -> ChargeObject:
    return ChargeObject.model_validate({"id": "ch_1", "invoice": invoice, "amount_refunded": amount_refunded})


def test_commission_math_uses_subtotal_not_total():
    amounts = compute_commission(11900, 10000, 0.25)

    assert amounts == {
        "amount_total": 119.0,
        "amount_net": 100.0,
        "commission_rate": 0.25,
        "commission_amount": 25.0,
    }


def test_commission_math_rounds_to_cents():
    assert compute_commission(999, 999, "0.15")["commission_amount"] == 1.5


@pytest.mark.asyncio
async def test_invoice_paid_creates_pending_commission():
    store, referral = _referred_store()
    service = CommissionService(store)

    result = await service.handle_invoice_paid("evt_1", _invoice())

    assert result["success"] is True
    assert result["commission_amount"] == 25.0
    assert len(store.commissions) == 1

    commission = store.commissions[0]
    assert commission["stripe_event_id"] == "evt_1"
    assert commission["invoice_id"] == "in_1"
    assert commission["subscription_id"] == "sub_1"
    assert commission["status"] == "pending"
    hold_until = datetime.fromisoformat(commission["hold_until"])
    expected = datetime.now(timezone.utc) + timedelta(days=14)
    assert abs((hold_until - expected).total_seconds()) < 60

    stored_referral = store.referrals[0]
    assert stored_referral["status"] == "paying"
    assert stored_referral["first_payment_at"] is not None
    assert stored_referral["lifetime_value"] == 119.0


@pytest.mark.asyncio
async def test_invoice_paid_replay_creates_one_commission():
    store, _ = _referred_store()
    service = CommissionService(store)

    await service.handle_invoice_paid("evt_1", _invoice())
    replay = await service.handle_invoice_paid("evt_1", _invoice())

    assert replay["duplicate"] is True
    assert len(store.commissions) == 1
    assert store.referrals[0]["lifetime_value"] == 119.0


@pytest.mark.asyncio
async def test_concurrent_duplicate_insert_is_not_an_error():
    store, _ = _referred_store()
    service = CommissionService(store)

    original_lookup = store.get_commission_by_event

    async def _stale_lookup(event_id):
        # the other delivery inserted between our read and our write
        return None

    await service.handle_invoice_paid("evt_1", _invoice())
    store.get_commission_by_event = _stale_lookup
    result = await service.handle_invoice_paid("evt_1", _invoice())
    store.get_commission_by_event = original_lookup

    assert result == {"success": True, "duplicate": True}
    assert len(store.commissions) == 1


@pytest.mark.asyncio
async def test_paying_referral_only_refreshes_last_payment():
    store, _ = _referred_store(referral_status="paying")
    store.referrals[0]["first_payment_at"] = "2025-06-01T00:00:00+00:00"

    await CommissionService(store).handle_invoice_paid("evt_2", _invoice())

    referral = store.referrals[0]
    assert referral["first_payment_at"] == "2025-06-01T00:00:00+00:00"
    assert referral["last_payment_at"] is not None


@pytest.mark.asyncio
async def test_blocked_affiliate_gets_no_commission():
    store, _ = _referred_store(blocked=True)

    result = await CommissionService(store).handle_invoice_paid("evt_1", _invoice())

    assert result == {"success": False, "reason": "affiliate_unavailable"}
    assert store.commissions == []


@pytest.mark.parametrize(
    "overrides, reason",
    [
        ({"customer": None}, "missing_customer"),
        ({"customer": {"id": "cus_1"}}, "missing_customer"),
        ({"subscription": None}, "not_subscription"),
        ({"customer": "cus_unknown"}, "no_referral"),
    ],
)
@pytest.mark.asyncio
async def test_invoice_paid_preconditions(overrides, reason):
    store, _ = _referred_store()

    result = await CommissionService(store).handle_invoice_paid("evt_1", _invoice(**overrides))

    assert result == {"success": False, "reason": reason}
    assert store.commissions == []


@pytest.mark.asyncio
async def test_subscription_nested_under_parent_is_recognised():
    store, _ = _referred_store()
    invoice = _invoice(
        subscription=None,
        parent={"subscription_details": {"subscription": "sub_nested"}},
    )

    await CommissionService(store).handle_invoice_paid("evt_1", invoice)

    assert store.commissions[0]["subscription_id"] == "sub_nested"


@pytest.mark.asyncio
async def test_refund_reversal_nets_ledger_to_zero(caplog):
    store, _ = _referred_store()
    service = CommissionService(store)
    await service.handle_invoice_paid("evt_paid", _invoice())

    with caplog.at_level(logging.INFO):
        result = await service.handle_charge_refunded("evt_refund", _charge())

    assert result["success"] is True
    assert result["compensating_created"] is True
    assert "amount_refunded" not in result
    assert "charge ch_1 refunded 119.0" in caplog.text

    rows = [row for row in store.commissions if row["invoice_id"] == "in_1"]
    assert len(rows) == 2
    assert all(row["status"] == "reversed" for row in rows)
    assert round(sum(row["commission_amount"] for row in rows), 2) == 0.0
    assert round(sum(row["amount_net"] for row in rows), 2) == 0.0

    compensating = next(row for row in rows if row["stripe_event_id"] == "refund_evt_refund")
    assert compensating["commission_rate"] == 0
    assert compensating["commission_amount"] == -25.0


@pytest.mark.asyncio
async def test_refund_replay_is_idempotent():
    store, _ = _referred_store()
    service = CommissionService(store)
    await service.handle_invoice_paid("evt_paid", _invoice())

    await service.handle_charge_refunded("evt_refund", _charge())
    replay = await service.handle_charge_refunded("evt_refund", _charge())

    assert replay == {"success": True, "duplicate": True}
    assert len(store.commissions) == 2
    assert len([row for row in store.commissions if row["stripe_event_id"] == "refund_evt_refund"]) == 1


@pytest.mark.asyncio
async def test_refund_without_invoice_or_commission_is_noop():
    store, _ = _referred_store()
    service = CommissionService(store)

    assert (await service.handle_charge_refunded("evt_r", _charge(invoice=None)))["reason"] == "not_invoice"
    assert (await service.handle_charge_refunded("evt_r", _charge(invoice="in_none")))["reason"] == "no_commission"
    assert store.commissions == []


@pytest.mark.asyncio
async def test_link_referral_customer_first_write_wins():
    store = MockBillingStore()
    store.stripe_customers["cus_1"] = "user-1"
    store.add_referral("aff-1", referred_user_id="user-1")
    service = CommissionService(store)

    first = await service.link_referral_customer("cus_1")
    store.stripe_customers["cus_2"] = "user-1"
    second = await service.link_referral_customer("cus_2")

    assert first == {"success": True, "linked": True}
    assert second == {"success": True, "linked": False}
    assert store.referrals[0]["customer_id"] == "cus_1"


@pytest.mark.asyncio
async def test_link_referral_customer_misses_are_noops():
    store = MockBillingStore()
    service = CommissionService(store)

    assert (await service.link_referral_customer("cus_unknown"))["reason"] == "no_user"

    store.stripe_customers["cus_1"] = "user-1"
    assert (await service.link_referral_customer("cus_1"))["reason"] == "no_referral"
