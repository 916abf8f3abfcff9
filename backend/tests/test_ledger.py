"""Ledger service tests - balances, transfers, rewards, purchases, premium"""
import pytest
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy import func
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from reelcoin.core.exceptions import (
    ValidationError, AccountNotFoundError, InsufficientBalanceError,
    ConflictError, UpstreamUnavailableError
)
from reelcoin.models.account import Account
from reelcoin.models.content_item import ContentItem
from reelcoin.models.store_purchase import StorePurchase
from reelcoin.models.token_transaction import TokenTransaction, TransactionType
from reelcoin.services import ledger_service
from reelcoin.services.ledger_service import (
    reward_upload, transfer_tokens, purchase_item, activate_premium,
    record_view, get_transactions
)


def _balance(db, account_id):
    db.expire_all()
    account = db.query(Account).filter(Account.id == account_id).one()
    return account.content_tokens, account.view_tokens


def _post(db, owner_id, is_video=True):
    item = ContentItem(owner_id=owner_id, is_video=is_video)
    db.add(item)
    db.commit()
    db.refresh(item)
    return item


def _transaction_count(db):
    return db.query(func.count(TokenTransaction.id)).scalar()


@pytest.mark.critical
class TestTransfer:
    """Transfers are atomic and conserve tokens"""

    def test_transfer_moves_tokens_and_records_one_transaction(self, db_session, account_a, account_b):
        """A sends 200 to B: balances 300/200 and one transfer row"""
        transaction = transfer_tokens(account_a.id, "XYZ789", 200, 0, db_session)

        assert _balance(db_session, account_a.id)[0] == Decimal("300")
        assert _balance(db_session, account_b.id)[0] == Decimal("200")
        assert transaction.type == TransactionType.TRANSFER.value
        assert transaction.sender_id == account_a.id
        assert transaction.recipient_id == account_b.id
        assert transaction.content_tokens == Decimal("200")
        assert _transaction_count(db_session) == 1

    def test_transfer_conserves_total_supply(self, db_session, account_a, account_b):
        before = sum(_balance(db_session, i)[0] for i in (account_a.id, account_b.id))
        transfer_tokens(account_a.id, "XYZ789", Decimal("123.45678901"), 0, db_session)
        after = sum(_balance(db_session, i)[0] for i in (account_a.id, account_b.id))
        assert before == after

    def test_transfer_code_is_case_insensitive(self, db_session, account_a, account_b):
        transfer_tokens(account_a.id, " xyz789 ", 1, 0, db_session)
        assert _balance(db_session, account_b.id)[0] == Decimal("1")

    def test_view_tokens_transfer_independently(self, db_session, make_account, account_b):
        viewer = make_account("user-v", "victor", view_tokens=40, transfer_code="VVV111")
        transfer_tokens(viewer.id, "XYZ789", 0, 15, db_session)
        assert _balance(db_session, viewer.id) == (Decimal("0"), Decimal("25"))
        assert _balance(db_session, account_b.id) == (Decimal("0"), Decimal("15"))

    def test_zero_amount_rejected(self, db_session, account_a, account_b):
        """B with an empty wallet tries to send nothing"""
        with pytest.raises(ValidationError):
            transfer_tokens(account_b.id, "ABC123", 0, 0, db_session)
        assert _transaction_count(db_session) == 0

    def test_negative_amount_rejected(self, db_session, account_a, account_b):
        with pytest.raises(ValidationError):
            transfer_tokens(account_a.id, "XYZ789", -5, 0, db_session)
        assert _balance(db_session, account_a.id)[0] == Decimal("500")

    def test_too_many_decimal_places_rejected(self, db_session, account_a, account_b):
        with pytest.raises(ValidationError):
            transfer_tokens(account_a.id, "XYZ789", Decimal("0.000000001"), 0, db_session)

    def test_non_numeric_amount_rejected(self, db_session, account_a, account_b):
        with pytest.raises(ValidationError):
            transfer_tokens(account_a.id, "XYZ789", "lots", 0, db_session)

    def test_insufficient_balance_leaves_state_unchanged(self, db_session, account_a, account_b):
        with pytest.raises(InsufficientBalanceError):
            transfer_tokens(account_a.id, "XYZ789", 501, 0, db_session)

        assert _balance(db_session, account_a.id)[0] == Decimal("500")
        assert _balance(db_session, account_b.id)[0] == Decimal("0")
        assert _transaction_count(db_session) == 0

    def test_insufficient_view_tokens_rejected_even_with_content_tokens(self, db_session, account_a, account_b):
        with pytest.raises(InsufficientBalanceError):
            transfer_tokens(account_a.id, "XYZ789", 10, 1, db_session)
        assert _balance(db_session, account_a.id) == (Decimal("500"), Decimal("0"))

    def test_unknown_transfer_code_rejected(self, db_session, account_a):
        with pytest.raises(ValidationError):
            transfer_tokens(account_a.id, "NOPE00", 10, 0, db_session)
        assert _balance(db_session, account_a.id)[0] == Decimal("500")
        assert _transaction_count(db_session) == 0

    def test_self_transfer_rejected(self, db_session, account_a):
        with pytest.raises(ValidationError):
            transfer_tokens(account_a.id, "ABC123", 10, 0, db_session)
        assert _balance(db_session, account_a.id)[0] == Decimal("500")

    def test_unknown_sender_rejected(self, db_session, account_b):
        with pytest.raises(AccountNotFoundError):
            transfer_tokens("ghost", "XYZ789", 10, 0, db_session)


@pytest.mark.critical
class TestRewardUpload:
    """Upload rewards are minted once per content item"""

    def test_video_reward(self, db_session, account_b):
        item = _post(db_session, account_b.id, is_video=True)
        result = reward_upload(account_b.id, item.id, db_session)

        assert result.created is True
        assert result.transaction.sender_id is None
        assert result.transaction.recipient_id == account_b.id
        assert result.transaction.content_item_id == item.id
        assert _balance(db_session, account_b.id)[0] == Decimal("10")

    def test_image_reward(self, db_session, account_b):
        item = _post(db_session, account_b.id, is_video=False)
        reward_upload(account_b.id, item.id, db_session)
        assert _balance(db_session, account_b.id)[0] == Decimal("5")

    def test_replay_credits_once(self, db_session, account_b):
        item = _post(db_session, account_b.id)
        first = reward_upload(account_b.id, item.id, db_session)
        second = reward_upload(account_b.id, item.id, db_session)

        assert second.created is False
        assert second.transaction.id == first.transaction.id
        assert _balance(db_session, account_b.id)[0] == Decimal("10")
        assert _transaction_count(db_session) == 1

    def test_someone_elses_item_rejected(self, db_session, account_a, account_b):
        item = _post(db_session, account_a.id)
        with pytest.raises(ValidationError):
            reward_upload(account_b.id, item.id, db_session)
        assert _balance(db_session, account_b.id)[0] == Decimal("0")

    def test_content_type_hint_must_match(self, db_session, account_b):
        item = _post(db_session, account_b.id, is_video=False)
        with pytest.raises(ValidationError):
            reward_upload(account_b.id, item.id, db_session, is_video=True)
        assert _transaction_count(db_session) == 0


@pytest.mark.critical
class TestPurchaseItem:
    """Purchases debit the catalog price on the locked row"""

    def test_purchase_debits_and_records(self, db_session, make_account):
        buyer = make_account("user-c", "carol", content_tokens=10000)
        purchase = purchase_item(buyer.id, "golden-username", db_session)

        assert purchase.active is True
        assert purchase.price == 5000
        assert _balance(db_session, buyer.id)[0] == Decimal("5000")
        transaction = db_session.query(TokenTransaction).one()
        assert transaction.type == TransactionType.PURCHASE.value
        assert transaction.sender_id == buyer.id
        assert transaction.recipient_id is None
        assert transaction.item_id == "golden-username"

    def test_consumable_purchase_is_inactive(self, db_session, make_account):
        buyer = make_account("user-c", "carol", content_tokens=1000)
        purchase = purchase_item(buyer.id, "highlighted-comment", db_session)
        assert purchase.active is False

    def test_second_purchase_cannot_overspend(self, db_session, make_account):
        """10000 tokens, two 8000 purchases: exactly one succeeds"""
        buyer = make_account("user-c", "carol", content_tokens=10000)
        purchase_item(buyer.id, "glowing-username", db_session)
        with pytest.raises(InsufficientBalanceError):
            purchase_item(buyer.id, "featured-post", db_session)

        assert _balance(db_session, buyer.id)[0] == Decimal("2000")
        assert db_session.query(StorePurchase).count() == 1
        assert _transaction_count(db_session) == 1

    def test_unknown_item_rejected(self, db_session, account_a):
        with pytest.raises(ValidationError):
            purchase_item(account_a.id, "time-machine", db_session)
        assert _balance(db_session, account_a.id)[0] == Decimal("500")

    def test_purchase_invalidates_premium_cache(self, db_session, make_account, mock_redis):
        buyer = make_account("user-c", "carol", content_tokens=5000)
        mock_redis.set(f"cache:premium:{buyer.id}", "false")
        purchase_item(buyer.id, "golden-username", db_session)
        assert mock_redis.get(f"cache:premium:{buyer.id}") is None


@pytest.mark.critical
class TestConcurrencyHandling:
    """Stale reads are retried once, then surface as a conflict"""

    def test_stale_data_retried_once(self, db_session, make_account):
        buyer = make_account("user-c", "carol", content_tokens=10000)
        real_lock = ledger_service.lock_accounts
        calls = []

        def flaky_lock(db, *ids):
            calls.append(ids)
            if len(calls) == 1:
                raise StaleDataError("row changed underneath")
            return real_lock(db, *ids)

        with patch.object(ledger_service, "lock_accounts", side_effect=flaky_lock):
            purchase_item(buyer.id, "golden-username", db_session)

        assert len(calls) == 2
        assert _balance(db_session, buyer.id)[0] == Decimal("5000")

    def test_repeated_stale_data_becomes_conflict(self, db_session, make_account):
        buyer = make_account("user-c", "carol", content_tokens=10000)
        with patch.object(ledger_service, "lock_accounts", side_effect=StaleDataError("row changed")):
            with pytest.raises(ConflictError):
                purchase_item(buyer.id, "golden-username", db_session)

        assert _balance(db_session, buyer.id)[0] == Decimal("10000")
        assert _transaction_count(db_session) == 0

    def test_database_outage_is_upstream_unavailable(self, db_session, account_a, account_b):
        outage = OperationalError("SELECT", {}, Exception("connection refused"))
        with patch.object(ledger_service, "lock_accounts", side_effect=outage):
            with pytest.raises(UpstreamUnavailableError):
                transfer_tokens(account_a.id, "XYZ789", 10, 0, db_session)

        assert _balance(db_session, account_a.id)[0] == Decimal("500")

    def test_outage_before_the_transaction_is_upstream_unavailable(self, db_session, account_a, account_b):
        """Lookups ahead of the locked transaction fail the same way as the write"""
        outage = OperationalError("SELECT", {}, Exception("connection refused"))
        item = _post(db_session, account_b.id)

        with patch.object(ledger_service, "get_account_by_transfer_code", side_effect=outage):
            with pytest.raises(UpstreamUnavailableError):
                transfer_tokens(account_a.id, "XYZ789", 10, 0, db_session)
        with patch.object(ledger_service, "_find_transaction_by_key", side_effect=outage):
            with pytest.raises(UpstreamUnavailableError):
                reward_upload(account_b.id, item.id, db_session)
        with patch.object(ledger_service, "get_account", side_effect=outage):
            with pytest.raises(UpstreamUnavailableError):
                record_view(account_a.id, item.id, db_session)

        assert _balance(db_session, account_a.id) == (Decimal("500"), Decimal("0"))
        assert _balance(db_session, account_b.id) == (Decimal("0"), Decimal("0"))
        assert _transaction_count(db_session) == 0


@pytest.mark.critical
class TestActivatePremium:
    """Premium activation from confirmed payments"""

    def _active_premium_rows(self, db, account_id):
        return db.query(StorePurchase).filter(
            StorePurchase.user_id == account_id,
            StorePurchase.item_id == "premium_subscription",
            StorePurchase.active.is_(True)
        ).count()

    def test_activation_creates_active_row_and_audit_transaction(self, db_session, account_a):
        purchase = activate_premium(account_a.id, "pi_123", True, db_session)

        assert purchase.active is True
        assert purchase.payment_reference == "pi_123"
        transaction = db_session.query(TokenTransaction).one()
        assert transaction.type == TransactionType.PREMIUM_PAYMENT.value
        assert transaction.content_tokens == Decimal("0")
        assert _balance(db_session, account_a.id)[0] == Decimal("500")

    def test_replay_is_absorbed(self, db_session, account_a):
        first = activate_premium(account_a.id, "pi_123", True, db_session)
        second = activate_premium(account_a.id, "pi_123", True, db_session)

        assert second.id == first.id
        assert self._active_premium_rows(db_session, account_a.id) == 1
        assert _transaction_count(db_session) == 1

    def test_new_payment_keeps_one_active_row(self, db_session, account_a):
        activate_premium(account_a.id, "pi_1", True, db_session)
        activate_premium(account_a.id, "pi_2", True, db_session)

        assert self._active_premium_rows(db_session, account_a.id) == 1
        assert db_session.query(StorePurchase).count() == 2

    def test_failed_payment_is_noop(self, db_session, account_a):
        assert activate_premium(account_a.id, "pi_123", False, db_session) is None
        assert db_session.query(StorePurchase).count() == 0

    def test_unknown_account_is_ignored(self, db_session):
        assert activate_premium("ghost", "pi_123", True, db_session) is None
        assert db_session.query(StorePurchase).count() == 0

    def test_activation_invalidates_premium_cache(self, db_session, account_a, mock_redis):
        mock_redis.set(f"cache:premium:{account_a.id}", "false")
        activate_premium(account_a.id, "pi_123", True, db_session)
        assert mock_redis.get(f"cache:premium:{account_a.id}") is None


@pytest.mark.medium
class TestRecordView:
    """View rewards go to the content owner once per viewer"""

    def test_first_view_rewards_owner(self, db_session, account_a, account_b):
        item = _post(db_session, account_b.id)
        assert record_view(account_a.id, item.id, db_session) is True
        assert _balance(db_session, account_b.id)[1] == Decimal("1")

    def test_repeat_view_not_rewarded(self, db_session, account_a, account_b):
        item = _post(db_session, account_b.id)
        record_view(account_a.id, item.id, db_session)
        assert record_view(account_a.id, item.id, db_session) is False
        assert _balance(db_session, account_b.id)[1] == Decimal("1")

    def test_owner_view_not_rewarded(self, db_session, account_b):
        item = _post(db_session, account_b.id)
        assert record_view(account_b.id, item.id, db_session) is False
        assert _transaction_count(db_session) == 0

    def test_unknown_item_rejected(self, db_session, account_a):
        with pytest.raises(ValidationError):
            record_view(account_a.id, "missing", db_session)


@pytest.mark.medium
class TestTransactionHistory:

    def test_history_shows_direction_per_account(self, db_session, account_a, account_b):
        transfer_tokens(account_a.id, "XYZ789", 50, 0, db_session)

        sent = get_transactions(account_a.id, db_session)
        received = get_transactions(account_b.id, db_session)

        assert len(sent) == 1
        assert sent[0]['direction'] == 'out'
        assert received[0]['direction'] == 'in'
        assert Decimal(sent[0]['content_tokens']) == Decimal("50")

    def test_limit_is_clamped(self, db_session, account_a, account_b):
        for _ in range(3):
            transfer_tokens(account_a.id, "XYZ789", 1, 0, db_session)
        assert len(get_transactions(account_a.id, db_session, limit=0)) == 1
        assert len(get_transactions(account_a.id, db_session, limit=2)) == 2
