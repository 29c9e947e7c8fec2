"""Stripe adapter: async SDK calls and outcome mapping."""

from types import SimpleNamespace

import pytest
import stripe

from rentalpay.gateways.stripe_gateway import StripeGateway


def blocking_call(*args, **kwargs):
    raise AssertionError("synchronous Stripe call made from the event loop")


@pytest.fixture
def stripe_calls(monkeypatch):
    calls = []
    monkeypatch.setattr(stripe.PaymentIntent, "create", blocking_call)
    monkeypatch.setattr(stripe.Refund, "create", blocking_call)
    monkeypatch.setattr(stripe.Transfer, "create_reversal", blocking_call)
    return calls


async def test_charge_is_awaited_and_mapped(monkeypatch, stripe_calls):
    async def create_async(**kwargs):
        stripe_calls.append(kwargs)
        return SimpleNamespace(id="pi_42", status="succeeded", amount=kwargs["amount"])

    monkeypatch.setattr(stripe.PaymentIntent, "create_async", create_async)

    result = await StripeGateway(secret_key="sk_test").create_charge(
        9_000, "USD", "cus_1", "pm_1", "Trip charges", idempotency_key="key-1"
    )

    assert result.status == "succeeded"
    assert result.charge_id == "pi_42"
    assert stripe_calls[0]["currency"] == "usd"
    assert stripe_calls[0]["idempotency_key"] == "key-1"
    assert stripe_calls[0]["off_session"] is True


async def test_authentication_challenge_maps_to_requires_action(monkeypatch, stripe_calls):
    async def create_async(**kwargs):
        raise stripe.CardError("Authentication required", None, "authentication_required")

    monkeypatch.setattr(stripe.PaymentIntent, "create_async", create_async)

    result = await StripeGateway(secret_key="sk_test").create_charge(
        9_000, "USD", "cus_1", "pm_1", "Trip charges"
    )

    assert result.status == "requires_action"


async def test_refund_and_reversal_are_awaited(monkeypatch, stripe_calls):
    async def refund_async(**kwargs):
        stripe_calls.append(("refund", kwargs))
        return SimpleNamespace(id="re_1", status="succeeded")

    async def reversal_async(transfer_id, **kwargs):
        stripe_calls.append(("reversal", transfer_id, kwargs))
        return SimpleNamespace(id="trr_1", amount=kwargs["amount"])

    monkeypatch.setattr(stripe.Refund, "create_async", refund_async)
    monkeypatch.setattr(stripe.Transfer, "create_reversal_async", reversal_async)
    gateway = StripeGateway(secret_key="sk_test")

    refund = await gateway.create_refund("pi_rental", 5_000, "AC broken", idempotency_key="refund:1")
    reversal = await gateway.reverse_transfer("tr_host", 4_000, idempotency_key="transfer_reversal:1")

    assert refund.success and refund.refund_id == "re_1"
    assert reversal.success and reversal.amount == 4_000
    assert stripe_calls[0][1]["payment_intent"] == "pi_rental"
    assert stripe_calls[1][1] == "tr_host"
