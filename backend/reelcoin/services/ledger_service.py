"""Ledger service - the only code allowed to change token balances.

Every operation runs as one database transaction: lock the account rows it
touches (ascending id order, so opposite-direction transfers cannot
deadlock), re-check preconditions on the locked rows, apply the balance
changes, append exactly one TokenTransaction and commit. The account
``version_id`` catches lost updates on databases without row locks; such a
conflict is retried once with a fresh read before surfacing as ConflictError.
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional, Dict, Any, List, Callable, TypeVar

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from reelcoin.core.config import settings
from reelcoin.core.exceptions import (
    LedgerError, ValidationError, AccountNotFoundError, InsufficientBalanceError,
    ConflictError, UpstreamUnavailableError
)
from reelcoin.core.logging import ledger_logger as logger
from reelcoin.core.metrics import ledger_operations_counter, content_tokens_moved_counter
from reelcoin.db import redis as redis_store
from reelcoin.db.session import TRANSIENT_DB_ERRORS, translate_db_errors
from reelcoin.models.account import Account, TOKEN_SCALE
from reelcoin.models.content_item import ContentItem
from reelcoin.models.store_purchase import StorePurchase
from reelcoin.models.token_transaction import TokenTransaction, TransactionType
from reelcoin.models.video_view import VideoView
from reelcoin.services import catalog
from reelcoin.services.account_service import get_account, get_account_by_transfer_code


T = TypeVar("T")

ZERO = Decimal("0")
AMOUNT_QUANTUM = Decimal(1).scaleb(-TOKEN_SCALE)
MAX_HISTORY_LIMIT = 200


@dataclass
class RewardResult:
    transaction: TokenTransaction
    created: bool  # False when an earlier reward for the same content item was found


def _to_amount(value: Any, field: str) -> Decimal:
    """Parse a non-negative token amount with at most TOKEN_SCALE decimal places"""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"{field} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a number")
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative")
    try:
        if amount != amount.quantize(AMOUNT_QUANTUM):
            raise ValidationError(f"{field} supports at most {TOKEN_SCALE} decimal places")
    except InvalidOperation:
        raise ValidationError(f"{field} is too large")
    return amount


def lock_accounts(db: Session, *account_ids: str) -> Dict[str, Account]:
    """SELECT ... FOR UPDATE the given accounts in ascending id order"""
    ids = sorted(set(account_ids))
    rows = (
        db.query(Account)
        .filter(Account.id.in_(ids))
        .order_by(Account.id)
        .with_for_update()
        .populate_existing()
        .all()
    )
    return {account.id: account for account in rows}


def _find_transaction_by_key(idempotency_key: str, db: Session) -> Optional[TokenTransaction]:
    return db.query(TokenTransaction).filter(TokenTransaction.idempotency_key == idempotency_key).first()


def run_atomic(operation: str, db: Session, apply: Callable[[], T]) -> T:
    """Run ``apply`` and commit, or roll everything back.

    A StaleDataError (concurrent update of a row we read) is retried once.
    Connection-level database errors become UpstreamUnavailableError.
    """
    for attempt in (1, 2):
        try:
            result = apply()
            db.commit()
        except StaleDataError:
            db.rollback()
            if attempt == 1:
                logger.warning(f"{operation}: concurrent balance update detected, retrying with a fresh read")
                continue
            ledger_operations_counter.labels(operation=operation, status="conflict").inc()
            raise ConflictError("Your balance changed while this request was processed. Please try again.")
        except LedgerError as e:
            db.rollback()
            ledger_operations_counter.labels(operation=operation, status=e.code).inc()
            raise
        except TRANSIENT_DB_ERRORS as e:
            db.rollback()
            logger.error(f"{operation}: database unavailable: {e}", exc_info=True)
            ledger_operations_counter.labels(operation=operation, status="upstream_unavailable").inc()
            raise UpstreamUnavailableError("The wallet is temporarily unavailable. Please try again.") from e
        except Exception:
            db.rollback()
            raise
        ledger_operations_counter.labels(operation=operation, status="success").inc()
        return result
    raise AssertionError("unreachable")


@translate_db_errors("reward_upload")
def reward_upload(
    account_id: str,
    content_item_id: str,
    db: Session,
    is_video: Optional[bool] = None
) -> RewardResult:
    """
    Mint the upload reward for a content item the account has posted.

    The reward size comes from the stored content item (video or image), not
    from the caller. Safe to call repeatedly: the reward is keyed by
    (account, content item) and a replay returns the original transaction.

    Args:
        account_id: Uploader
        content_item_id: Content item that was just persisted
        db: Database session
        is_video: Optional caller hint; must match the stored item

    Returns:
        RewardResult with the reward transaction and whether it was created now
    """
    idempotency_key = f"reward:upload:{account_id}:{content_item_id}"
    existing = _find_transaction_by_key(idempotency_key, db)
    if existing:
        logger.info(f"Upload reward for {content_item_id} already credited to {account_id}, skipping")
        return RewardResult(transaction=existing, created=False)

    def apply() -> TokenTransaction:
        item = db.query(ContentItem).filter(ContentItem.id == content_item_id).first()
        if not item or item.owner_id != account_id:
            raise ValidationError("Content item not found for this account")
        if is_video is not None and bool(is_video) != item.is_video:
            raise ValidationError("Content type does not match the uploaded item")

        account = lock_accounts(db, account_id).get(account_id)
        if not account:
            raise AccountNotFoundError("Account not found")

        amount = Decimal(settings.VIDEO_UPLOAD_REWARD if item.is_video else settings.IMAGE_UPLOAD_REWARD)
        account.content_tokens += amount
        transaction = TokenTransaction(
            type=TransactionType.REWARD.value,
            sender_id=None,
            recipient_id=account_id,
            content_tokens=amount,
            view_tokens=ZERO,
            content_item_id=content_item_id,
            idempotency_key=idempotency_key
        )
        db.add(transaction)
        return transaction

    try:
        transaction = run_atomic("reward_upload", db, apply)
    except IntegrityError:
        # A concurrent retry credited it first
        existing = _find_transaction_by_key(idempotency_key, db)
        if existing:
            logger.info(f"Upload reward for {content_item_id} credited concurrently, absorbing duplicate")
            return RewardResult(transaction=existing, created=False)
        raise

    content_tokens_moved_counter.labels(type=TransactionType.REWARD.value).inc(float(transaction.content_tokens))
    logger.info(f"Upload reward: {transaction.content_tokens} content tokens to {account_id} for {content_item_id}")
    return RewardResult(transaction=transaction, created=True)


@translate_db_errors("transfer")
def transfer_tokens(
    sender_id: str,
    recipient_transfer_code: str,
    content_amount: Any,
    view_amount: Any,
    db: Session
) -> TokenTransaction:
    """
    Move tokens from the sender to the account owning ``recipient_transfer_code``.

    Debit, credit and the transfer record are committed together or not at all.

    Raises:
        ValidationError: bad amounts, unknown transfer code, or self-transfer
        InsufficientBalanceError: sender cannot cover either amount
    """
    content = _to_amount(content_amount, "content_amount")
    view = _to_amount(view_amount, "view_amount")
    if content == ZERO and view == ZERO:
        raise ValidationError("Transfer amount must be greater than zero")

    recipient = get_account_by_transfer_code(recipient_transfer_code, db)
    if not recipient:
        raise ValidationError("No account found for that transfer code")
    recipient_id = recipient.id
    if recipient_id == sender_id:
        raise ValidationError("You cannot transfer tokens to yourself")

    def apply() -> TokenTransaction:
        accounts = lock_accounts(db, sender_id, recipient_id)
        sender = accounts.get(sender_id)
        receiver = accounts.get(recipient_id)
        if not sender:
            raise AccountNotFoundError("Account not found")
        if not receiver:
            raise ValidationError("No account found for that transfer code")
        if sender.content_tokens < content or sender.view_tokens < view:
            raise InsufficientBalanceError("Insufficient token balance for this transfer")

        sender.content_tokens -= content
        sender.view_tokens -= view
        receiver.content_tokens += content
        receiver.view_tokens += view

        transaction = TokenTransaction(
            type=TransactionType.TRANSFER.value,
            sender_id=sender_id,
            recipient_id=recipient_id,
            content_tokens=content,
            view_tokens=view
        )
        db.add(transaction)
        return transaction

    transaction = run_atomic("transfer", db, apply)
    content_tokens_moved_counter.labels(type=TransactionType.TRANSFER.value).inc(float(content))
    logger.info(f"Transfer {transaction.id}: {sender_id} -> {recipient_id} ({content} content, {view} view)")
    return transaction


@translate_db_errors("purchase")
def purchase_item(account_id: str, item_id: str, db: Session) -> StorePurchase:
    """
    Debit the catalog price of ``item_id`` and record the purchase.

    The balance check and the debit happen on the locked account row, so two
    simultaneous purchases cannot both spend the same tokens.
    """
    item = catalog.get_item(item_id)
    price = Decimal(item.price)

    def apply() -> StorePurchase:
        account = lock_accounts(db, account_id).get(account_id)
        if not account:
            raise AccountNotFoundError("Account not found")
        if account.content_tokens < price:
            raise InsufficientBalanceError(f"Not enough content tokens: {item.name} costs {item.price}")

        account.content_tokens -= price
        db.add(TokenTransaction(
            type=TransactionType.PURCHASE.value,
            sender_id=account_id,
            recipient_id=None,
            content_tokens=price,
            view_tokens=ZERO,
            item_id=item.id
        ))
        purchase = StorePurchase(
            user_id=account_id,
            item_id=item.id,
            price=item.price,
            active=not item.consumable
        )
        db.add(purchase)
        return purchase

    purchase = run_atomic("purchase", db, apply)
    redis_store.invalidate_premium_cache(account_id)
    content_tokens_moved_counter.labels(type=TransactionType.PURCHASE.value).inc(item.price)
    logger.info(f"Purchase {purchase.id}: {account_id} bought {item.id} for {item.price} content tokens")
    return purchase


@translate_db_errors("activate_premium")
def activate_premium(
    account_id: Optional[str],
    payment_reference: str,
    success: bool,
    db: Session
) -> Optional[StorePurchase]:
    """
    Grant premium after a confirmed payment. Only the payment webhook calls this.

    Replaying the same payment reference returns the existing purchase. An
    unknown account is logged and ignored so the provider stops retrying.
    """
    if not success:
        logger.info(f"Payment {payment_reference} not successful, premium not activated")
        return None
    if not payment_reference:
        raise ValidationError("Payment reference is required")

    existing = db.query(StorePurchase).filter(StorePurchase.payment_reference == payment_reference).first()
    if existing:
        logger.info(f"Payment {payment_reference} already activated premium for {existing.user_id}")
        return existing

    if not account_id or not get_account(account_id, db):
        logger.warning(f"Payment {payment_reference} references unknown account {account_id!r}, ignoring")
        return None

    def apply() -> StorePurchase:
        # Serializes with other activations for the same account
        lock_accounts(db, account_id)
        db.query(StorePurchase).filter(
            StorePurchase.user_id == account_id,
            StorePurchase.item_id == settings.PREMIUM_ITEM_ID,
            StorePurchase.active.is_(True)
        ).update({StorePurchase.active: False}, synchronize_session=False)

        purchase = StorePurchase(
            user_id=account_id,
            item_id=settings.PREMIUM_ITEM_ID,
            price=0,
            active=True,
            payment_reference=payment_reference
        )
        db.add(purchase)
        db.add(TokenTransaction(
            type=TransactionType.PREMIUM_PAYMENT.value,
            sender_id=account_id,
            recipient_id=None,
            content_tokens=ZERO,
            view_tokens=ZERO,
            item_id=settings.PREMIUM_ITEM_ID,
            idempotency_key=f"premium:{payment_reference}"
        ))
        return purchase

    try:
        purchase = run_atomic("activate_premium", db, apply)
    except IntegrityError:
        existing = db.query(StorePurchase).filter(StorePurchase.payment_reference == payment_reference).first()
        if existing:
            logger.info(f"Payment {payment_reference} activated concurrently, absorbing duplicate")
            return existing
        raise

    redis_store.invalidate_premium_cache(account_id)
    logger.info(f"Premium activated for {account_id} (payment {payment_reference})")
    return purchase


@translate_db_errors("record_view")
def record_view(viewer_id: str, content_item_id: str, db: Session) -> bool:
    """
    Count a view and mint VIEW_REWARD view tokens to the item's owner.

    Only the first view per viewer is rewarded and owners viewing their own
    content earn nothing. Returns True if a reward was credited.
    """
    item = db.query(ContentItem).filter(ContentItem.id == content_item_id).first()
    if not item:
        raise ValidationError("Content item not found")
    owner_id = item.owner_id
    if owner_id == viewer_id:
        return False

    already_viewed = db.query(VideoView.id).filter(
        VideoView.content_item_id == content_item_id,
        VideoView.viewer_id == viewer_id
    ).first()
    if already_viewed:
        return False
    if not get_account(viewer_id, db):
        raise AccountNotFoundError("Account not found")

    reward = Decimal(settings.VIEW_REWARD)

    def apply() -> bool:
        owner = lock_accounts(db, owner_id).get(owner_id)
        if not owner:
            raise AccountNotFoundError("Content owner not found")
        db.add(VideoView(content_item_id=content_item_id, viewer_id=viewer_id))
        owner.view_tokens += reward
        db.add(TokenTransaction(
            type=TransactionType.REWARD.value,
            sender_id=None,
            recipient_id=owner_id,
            content_tokens=ZERO,
            view_tokens=reward,
            content_item_id=content_item_id,
            idempotency_key=f"reward:view:{viewer_id}:{content_item_id}"
        ))
        return True

    try:
        return run_atomic("record_view", db, apply)
    except IntegrityError:
        logger.info(f"View of {content_item_id} by {viewer_id} recorded concurrently, absorbing duplicate")
        return False


@translate_db_errors("get_transactions")
def get_transactions(account_id: str, db: Session, limit: int = 50) -> List[Dict[str, Any]]:
    """Get transaction history for an account, newest first"""
    limit = max(1, min(limit, MAX_HISTORY_LIMIT))
    transactions = db.query(TokenTransaction).filter(
        or_(TokenTransaction.sender_id == account_id, TokenTransaction.recipient_id == account_id)
    ).order_by(
        TokenTransaction.created_at.desc()
    ).limit(limit).all()

    return [t.to_dict(account_id) for t in transactions]
