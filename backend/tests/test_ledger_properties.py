"""
Ledger-wide properties over operation sequences: balances never go negative,
the transaction log sums to the balance change, purchases credit once.
"""
import asyncio
import random
import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

from conftest import account_doc

pytestmark = pytest.mark.asyncio


async def _drain_tasks():
    for _ in range(3):
        await asyncio.sleep(0)


def _total(fake_db, account_id="acct-1"):
    doc = next(d for d in fake_db.accounts.docs if d["account_id"] == account_id)
    return doc["credits"]["free"] + doc["credits"]["purchased"]


def _logged_sum(fake_db, account_id="acct-1"):
    return sum(t["amount"] for t in fake_db.credit_transactions.docs if t["account_id"] == account_id)


async def _random_operation(rng, step):
    from creditledger.errors import InsufficientCredits
    from creditledger.services.provider_resolver import provider_resolver
    from creditledger.services.reset_scheduler import reset_scheduler

    choice = rng.choice(["debit", "debit", "refund", "reset", "charge"])
    try:
        if choice == "debit":
            await provider_resolver.resolve("acct-1", "cv-generate")
        elif choice == "charge":
            await provider_resolver.charge("acct-1", rng.randint(0, 4), "template-analyze")
        elif choice == "refund":
            await provider_resolver.refund("acct-1", "cv-generate")
        else:
            month = 1 + step % 12
            await reset_scheduler.check_and_reset("acct-1", now=datetime(2027, month, 2, tzinfo=timezone.utc))
    except InsufficientCredits:
        pass


class TestInvariants:
    @pytest.mark.parametrize("seed", [1, 7, 42])
    async def test_non_negative_and_conserved(self, fake_db, platform_key, seed):
        rng = random.Random(seed)
        fake_db.accounts.docs.append(account_doc(
            free=2, purchased=3, last_free_reset=datetime(2026, 12, 1, tzinfo=timezone.utc)
        ))
        initial_total = _total(fake_db)

        for step in range(60):
            await _random_operation(rng, step)
            credits = fake_db.accounts.docs[0]["credits"]
            assert credits["free"] >= 0
            assert credits["purchased"] >= 0

        await _drain_tasks()
        assert _logged_sum(fake_db) == _total(fake_db) - initial_total

    async def test_failed_debit_changes_nothing(self, fake_db, platform_key):
        from creditledger.errors import InsufficientCredits
        from creditledger.services.provider_resolver import provider_resolver
        fake_db.accounts.docs.append(account_doc(free=1, purchased=1))

        with pytest.raises(InsufficientCredits):
            await provider_resolver.charge("acct-1", 3, "cv-generate")

        assert _total(fake_db) == 2
        assert fake_db.credit_transactions.docs == []


class TestPurchaseIdempotence:
    @pytest.mark.parametrize("deliveries", [1, 2, 5])
    async def test_n_deliveries_credit_once(self, fake_db, deliveries):
        from creditledger.services.payment_gateway import PaymentEvent
        from creditledger.services.webhook_processor import webhook_processor
        fake_db.accounts.docs.append(account_doc(free=0, purchased=0))
        payment = PaymentEvent(
            payment_id="cs_1",
            status="paid",
            metadata={"account_id": "acct-1", "package_id": "pack_5", "credits": "5"},
        )
        event = {"type": "checkout.session.completed", "data": {"object": {"id": "cs_1"}}}

        with patch("creditledger.services.webhook_processor.payment_gateway.get_payment",
                   AsyncMock(return_value=payment)):
            for _ in range(deliveries):
                await webhook_processor.process_event(event)

        purchases = [t for t in fake_db.credit_transactions.docs if t["type"] == "purchase"]
        assert len(purchases) == 1
        assert fake_db.accounts.docs[0]["credits"]["purchased"] == 5


class TestEndToEnd:
    async def test_new_account_three_operations_then_failed_fourth(self, fake_db, platform_key):
        from creditledger.services.account_service import account_service
        from creditledger.services.platform_operation import platform_operation

        account, created = await account_service.init_account("acct-1", email="ada@example.com", display_name="Ada")
        assert created is True
        assert (account["credits"]["free"], account["credits"]["purchased"]) == (5, 0)

        for _ in range(3):
            async with platform_operation("acct-1", "cv-generate") as handle:
                assert handle.charged == 1
        await _drain_tasks()

        assert fake_db.accounts.docs[0]["credits"]["free"] == 2
        low = [m for m in fake_db.mail_outbox.docs if m["template"] == "credits-low"]
        assert len(low) == 1
        assert low[0]["subject"] == "You have 2 credits left"

        with pytest.raises(RuntimeError):
            async with platform_operation("acct-1", "cv-generate"):
                raise RuntimeError("model call failed")

        credits = fake_db.accounts.docs[0]["credits"]
        assert (credits["free"], credits["purchased"]) == (2, 0)
        refunds = [t for t in fake_db.credit_transactions.docs if t["type"] == "platform_ai_refund"]
        assert len(refunds) == 1
        # log includes the sign-up grant, so it sums to the full balance
        assert _logged_sum(fake_db) == _total(fake_db)
