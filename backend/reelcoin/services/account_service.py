"""Account service - profile rows, transfer codes and read-only balance snapshots"""
import logging
import re
import secrets
from typing import Optional, Dict, Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from reelcoin.core.exceptions import ValidationError, AccountNotFoundError
from reelcoin.db.session import translate_db_errors
from reelcoin.models.account import Account

logger = logging.getLogger(__name__)

# No 0/O or 1/I so codes survive being read aloud or retyped
TRANSFER_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
TRANSFER_CODE_LENGTH = 8
MAX_CODE_ATTEMPTS = 5

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_.]{3,30}$")


def generate_transfer_code() -> str:
    return "".join(secrets.choice(TRANSFER_CODE_ALPHABET) for _ in range(TRANSFER_CODE_LENGTH))


def normalize_transfer_code(code: str) -> str:
    return (code or "").strip().upper()


def get_account(account_id: str, db: Session) -> Optional[Account]:
    return db.query(Account).filter(Account.id == account_id).first()


def require_account(account_id: str, db: Session) -> Account:
    account = get_account(account_id, db)
    if not account:
        raise AccountNotFoundError("Account not found")
    return account


def get_account_by_transfer_code(code: str, db: Session) -> Optional[Account]:
    normalized = normalize_transfer_code(code)
    if not normalized:
        return None
    return db.query(Account).filter(Account.transfer_code == normalized).first()


@translate_db_errors("create_account")
def create_account(account_id: str, username: str, db: Session) -> Account:
    """Create the account row for a newly signed-up identity.

    Balances start at zero. Calling again for an existing account id returns
    the existing row unchanged.
    """
    existing = get_account(account_id, db)
    if existing:
        return existing

    username = (username or "").strip()
    if not USERNAME_PATTERN.match(username):
        raise ValidationError("Username must be 3-30 characters: letters, digits, '_' or '.'")

    if db.query(Account).filter(Account.username == username).first():
        raise ValidationError("Username is already taken")

    for attempt in range(MAX_CODE_ATTEMPTS):
        code = generate_transfer_code()
        if db.query(Account.id).filter(Account.transfer_code == code).first():
            continue

        account = Account(id=account_id, username=username, transfer_code=code)
        db.add(account)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            # Lost a race: same identity signed up twice, or username/code taken meanwhile
            existing = get_account(account_id, db)
            if existing:
                return existing
            if db.query(Account).filter(Account.username == username).first():
                raise ValidationError("Username is already taken")
            logger.warning(f"Transfer code collision for new account {account_id} (attempt {attempt + 1})")
            continue

        db.refresh(account)
        logger.info(f"Account created: {account_id} ({username})")
        return account

    raise RuntimeError(f"Could not allocate a unique transfer code for account {account_id}")


@translate_db_errors("get_account_snapshot")
def get_account_snapshot(account_id: str, db: Session) -> Dict[str, Any]:
    """Read-only view of an account for the UI"""
    account = require_account(account_id, db)
    return {
        'id': account.id,
        'username': account.username,
        'content_tokens': str(account.content_tokens),
        'view_tokens': str(account.view_tokens),
        'transfer_code': account.transfer_code,
    }
