"""
Monthly free-credit reset gating and audit.
"""
import pytest
from datetime import datetime, timedelta, timezone, date

from conftest import account_doc

pytestmark = pytest.mark.asyncio

NOW = datetime(2026, 10, 20, 12, 0, tzinfo=timezone.utc)


def _monthly(fake_db):
    return [t for t in fake_db.credit_transactions.docs if t["type"] == "monthly_free"]


class TestIsResetDue:
    async def test_same_month_is_not_due(self):
        from creditledger.services.reset_scheduler import is_reset_due
        assert is_reset_due(NOW - timedelta(days=15), NOW) is False

    async def test_previous_month_is_due(self):
        from creditledger.services.reset_scheduler import is_reset_due
        assert is_reset_due(datetime(2026, 9, 20, tzinfo=timezone.utc), NOW) is True

    async def test_same_month_previous_year_is_due(self):
        from creditledger.services.reset_scheduler import is_reset_due
        assert is_reset_due(datetime(2025, 10, 25, tzinfo=timezone.utc), NOW) is True

    async def test_missing_or_malformed_marker_is_due(self):
        from creditledger.services.reset_scheduler import is_reset_due
        assert is_reset_due(None, NOW) is True
        assert is_reset_due("2026-10-01", NOW) is True

    async def test_naive_marker_is_treated_as_utc(self):
        from creditledger.services.reset_scheduler import is_reset_due
        assert is_reset_due(datetime(2026, 10, 1), NOW) is False


class TestCheckAndReset:
    async def test_no_change_within_period(self, fake_db):
        from creditledger.services.reset_scheduler import reset_scheduler
        fake_db.accounts.docs.append(account_doc(free=1, last_free_reset=NOW - timedelta(days=15)))

        result = await reset_scheduler.check_and_reset("acct-1", now=NOW)

        assert result.reset is False
        assert fake_db.accounts.docs[0]["credits"]["free"] == 1
        assert _monthly(fake_db) == []

    async def test_new_period_tops_up_and_logs_once(self, fake_db):
        from creditledger.models.credits import MONTHLY_FREE_CREDITS
        from creditledger.services.reset_scheduler import reset_scheduler
        fake_db.accounts.docs.append(account_doc(
            free=1, purchased=4, last_free_reset=datetime(2026, 9, 18, tzinfo=timezone.utc)
        ))

        result = await reset_scheduler.check_and_reset("acct-1", now=NOW)

        credits = fake_db.accounts.docs[0]["credits"]
        assert result.reset is True
        assert (credits["free"], credits["purchased"]) == (MONTHLY_FREE_CREDITS, 4)
        assert credits["last_free_reset"] == NOW
        [tx] = _monthly(fake_db)
        assert tx["amount"] == MONTHLY_FREE_CREDITS - 1
        assert [m["template"] for m in fake_db.mail_outbox.docs] == ["credits-reset"]

    async def test_second_call_in_same_period_is_noop(self, fake_db):
        from creditledger.services.reset_scheduler import reset_scheduler
        fake_db.accounts.docs.append(account_doc(
            free=0, last_free_reset=datetime(2026, 9, 18, tzinfo=timezone.utc)
        ))

        first = await reset_scheduler.check_and_reset("acct-1", now=NOW)
        second = await reset_scheduler.check_and_reset("acct-1", now=NOW + timedelta(hours=1))

        assert (first.reset, second.reset) == (True, False)
        assert len(_monthly(fake_db)) == 1

    async def test_overwrite_reduces_higher_free_balance(self, fake_db):
        from creditledger.models.credits import MONTHLY_FREE_CREDITS
        from creditledger.services.reset_scheduler import reset_scheduler
        fake_db.accounts.docs.append(account_doc(
            free=MONTHLY_FREE_CREDITS + 3, last_free_reset=datetime(2026, 9, 18, tzinfo=timezone.utc)
        ))

        await reset_scheduler.check_and_reset("acct-1", now=NOW)

        assert fake_db.accounts.docs[0]["credits"]["free"] == MONTHLY_FREE_CREDITS
        [tx] = _monthly(fake_db)
        assert tx["amount"] == -3
        assert fake_db.mail_outbox.docs == []

    async def test_already_full_bucket_logs_nothing(self, fake_db):
        from creditledger.models.credits import MONTHLY_FREE_CREDITS
        from creditledger.services.reset_scheduler import reset_scheduler
        fake_db.accounts.docs.append(account_doc(
            free=MONTHLY_FREE_CREDITS, last_free_reset=datetime(2026, 9, 18, tzinfo=timezone.utc)
        ))

        result = await reset_scheduler.check_and_reset("acct-1", now=NOW)

        assert result.reset is True
        assert fake_db.accounts.docs[0]["credits"]["last_free_reset"] == NOW
        assert _monthly(fake_db) == []

    async def test_missing_marker_resets(self, fake_db):
        from creditledger.models.credits import MONTHLY_FREE_CREDITS
        from creditledger.services.reset_scheduler import reset_scheduler
        doc = account_doc(free=2)
        del doc["credits"]["last_free_reset"]
        fake_db.accounts.docs.append(doc)

        result = await reset_scheduler.check_and_reset("acct-1", now=NOW)

        assert (result.reset, result.reason) == (True, "initialized")
        assert fake_db.accounts.docs[0]["credits"]["free"] == MONTHLY_FREE_CREDITS
        [tx] = _monthly(fake_db)
        assert tx["amount"] == MONTHLY_FREE_CREDITS - 2

    async def test_missing_account_raises(self, fake_db):
        from creditledger.errors import AccountNotFound
        from creditledger.services.reset_scheduler import reset_scheduler

        with pytest.raises(AccountNotFound):
            await reset_scheduler.check_and_reset("ghost", now=NOW)


class TestResetInfo:
    async def test_next_reset_rolls_over_year(self):
        from creditledger.services.reset_scheduler import get_next_reset_date
        assert get_next_reset_date(datetime(2026, 12, 5, tzinfo=timezone.utc)) == date(2027, 1, 1)
        assert get_next_reset_date(NOW) == date(2026, 11, 1)

    async def test_days_until_reset(self):
        from creditledger.services.reset_scheduler import get_days_until_reset
        assert get_days_until_reset(datetime(2026, 10, 31, 0, 0, tzinfo=timezone.utc)) == 1
        assert get_days_until_reset(NOW) == 12
