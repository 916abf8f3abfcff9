"""Purchase flow - catalog lookup, affordability pre-check, ledger debit"""
import logging
from decimal import Decimal
from typing import Dict, Any

from sqlalchemy.orm import Session

from reelcoin.core.exceptions import InsufficientBalanceError
from reelcoin.db.session import translate_db_errors
from reelcoin.services import catalog
from reelcoin.services.account_service import require_account, get_account_snapshot
from reelcoin.services.ledger_service import purchase_item

logger = logging.getLogger(__name__)


@translate_db_errors("purchase")
def purchase(account_id: str, item_id: str, db: Session) -> Dict[str, Any]:
    """Buy a store item with content tokens.

    The pre-check fails fast for the UI; the ledger re-checks on the locked
    row, which is what actually prevents overspending.
    """
    item = catalog.get_item(item_id)
    account = require_account(account_id, db)
    if account.content_tokens < Decimal(item.price):
        logger.info(f"Purchase of {item.id} by {account_id} rejected before debit: balance {account.content_tokens}")
        raise InsufficientBalanceError(f"Not enough content tokens: {item.name} costs {item.price}")

    store_purchase = purchase_item(account_id, item.id, db)
    return {
        'purchase': store_purchase.to_dict(),
        'item': item.to_dict(),
        'account': get_account_snapshot(account_id, db),
    }
