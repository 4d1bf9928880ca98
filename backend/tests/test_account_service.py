"""
Account lifecycle, settings and operator adjustments.
"""
import pytest
from unittest.mock import patch

from conftest import account_doc

pytestmark = pytest.mark.asyncio


class TestInitAccount:
    async def test_first_sign_in_creates_account_with_grant(self, fake_db):
        from creditledger.models.credits import MONTHLY_FREE_CREDITS
        from creditledger.services.account_service import account_service

        account, created = await account_service.init_account("acct-1", email="ada@example.com", display_name="Ada")

        assert created is True
        assert account["llm_mode"] == "platform"
        assert account["api_key"] is None
        assert account["credits"]["free"] == MONTHLY_FREE_CREDITS
        [grant] = fake_db.credit_transactions.docs
        assert (grant["type"], grant["amount"]) == ("monthly_free", MONTHLY_FREE_CREDITS)
        assert [m["template"] for m in fake_db.mail_outbox.docs] == ["welcome"]

    async def test_second_sign_in_changes_nothing(self, fake_db):
        from creditledger.services.account_service import account_service
        fake_db.accounts.docs.append(account_doc(free=1, purchased=9))

        account, created = await account_service.init_account("acct-1", email="ada@example.com")

        assert created is False
        assert (account["credits"]["free"], account["credits"]["purchased"]) == (1, 9)
        assert fake_db.credit_transactions.docs == []
        assert fake_db.mail_outbox.docs == []


class TestSettings:
    async def test_set_mode_validates(self, fake_db):
        from creditledger.errors import ValidationError
        from creditledger.services.account_service import account_service
        fake_db.accounts.docs.append(account_doc())

        assert (await account_service.set_mode("acct-1", "own-key")).value == "own-key"
        assert fake_db.accounts.docs[0]["llm_mode"] == "own-key"
        with pytest.raises(ValidationError):
            await account_service.set_mode("acct-1", "free-for-all")

    async def test_api_key_is_stored_encrypted(self, fake_db):
        from creditledger.models.account import ApiKeyUpdate
        from creditledger.services.account_service import account_service
        from creditledger.services.credential_vault import decrypt_credential
        fake_db.accounts.docs.append(account_doc())

        await account_service.save_api_key(
            "acct-1", ApiKeyUpdate(provider="openai", api_key=" sk-mine ", model="gpt-4o")
        )

        stored = fake_db.accounts.docs[0]["api_key"]
        assert stored["encrypted_key"] != "sk-mine"
        assert decrypt_credential(stored["encrypted_key"]) == "sk-mine"

        await account_service.remove_api_key("acct-1")
        assert fake_db.accounts.docs[0]["api_key"] is None


class TestAdminAdjustment:
    async def test_absolute_then_relative_with_raw_deltas(self, fake_db):
        from creditledger.models.account import AdminCreditAdjustment
        from creditledger.services.account_service import account_service
        fake_db.accounts.docs.append(account_doc(free=2, purchased=3))

        balances = await account_service.admin_adjust_credits(
            "acct-1",
            AdminCreditAdjustment(free=10, add_free=2, add_purchased=-7, reason="support ticket"),
            admin_id="admin-1",
        )

        assert balances == {"free": 12, "purchased": 0}
        adjustments = {t["metadata"]["bucket"]: t for t in fake_db.credit_transactions.docs}
        assert adjustments["free"]["amount"] == 10
        assert adjustments["purchased"]["amount"] == -3
        assert all(t["type"] == "admin_adjustment" for t in adjustments.values())
        assert "support ticket" in adjustments["free"]["description"]

    async def test_negative_absolute_value_rejected(self, fake_db):
        from creditledger.errors import ValidationError
        from creditledger.models.account import AdminCreditAdjustment
        from creditledger.services.account_service import account_service
        fake_db.accounts.docs.append(account_doc(free=2, purchased=3))

        with pytest.raises(ValidationError):
            await account_service.admin_adjust_credits("acct-1", AdminCreditAdjustment(purchased=-1))
        assert fake_db.credit_transactions.docs == []

    async def test_no_change_logs_nothing(self, fake_db):
        from creditledger.models.account import AdminCreditAdjustment
        from creditledger.services.account_service import account_service
        fake_db.accounts.docs.append(account_doc(free=2, purchased=3))

        await account_service.admin_adjust_credits("acct-1", AdminCreditAdjustment(free=2))
        assert fake_db.credit_transactions.docs == []

    async def _adjust_with_debit_after_read(self, fake_db, adjustment, read_number):
        """Run an adjustment while a 3-credit debit lands right after the given account read."""
        from creditledger.services.account_service import account_service
        from creditledger.services.ledger_store import ledger_store
        from creditledger.services.provider_resolver import provider_resolver
        real_require = ledger_store.require_account
        reads = []

        async def racing_require(account_id):
            account = await real_require(account_id)
            reads.append(account_id)
            if len(reads) == read_number:
                await provider_resolver.charge(account_id, 3, "cv-generate")
            return account

        with patch.object(ledger_store, "require_account", side_effect=racing_require):
            return await account_service.admin_adjust_credits("acct-1", adjustment, admin_id="admin-1")

    async def test_relative_adjustment_keeps_concurrent_debit(self, fake_db):
        from creditledger.models.account import AdminCreditAdjustment
        fake_db.accounts.docs.append(account_doc(free=5, purchased=0))

        balances = await self._adjust_with_debit_after_read(fake_db, AdminCreditAdjustment(add_free=10), 1)

        assert balances["free"] == 12
        assert fake_db.accounts.docs[0]["credits"]["free"] == 12
        assert sum(t["amount"] for t in fake_db.credit_transactions.docs) == 12 - 5

    async def test_absolute_adjustment_rereads_after_concurrent_debit(self, fake_db):
        from creditledger.models.account import AdminCreditAdjustment
        fake_db.accounts.docs.append(account_doc(free=5, purchased=0))

        balances = await self._adjust_with_debit_after_read(fake_db, AdminCreditAdjustment(free=20), 2)

        assert balances["free"] == 20
        [adjustment] = [t for t in fake_db.credit_transactions.docs if t["type"] == "admin_adjustment"]
        assert adjustment["amount"] == 18
        assert sum(t["amount"] for t in fake_db.credit_transactions.docs) == 20 - 5

    async def test_clamped_decrement_logs_what_was_removed(self, fake_db):
        from creditledger.models.account import AdminCreditAdjustment
        from creditledger.services.account_service import account_service
        fake_db.accounts.docs.append(account_doc(free=1, purchased=4))

        balances = await account_service.admin_adjust_credits("acct-1", AdminCreditAdjustment(add_purchased=-10))

        assert balances == {"free": 1, "purchased": 0}
        [adjustment] = fake_db.credit_transactions.docs
        assert adjustment["amount"] == -4
