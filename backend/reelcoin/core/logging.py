"""Logging configuration for the application"""
import logging

from reelcoin.core.config import settings

# Named loggers, one per audit trail an operator greps for
LEDGER_LOGGERS = ("ledger", "entitlements", "webhook", "security", "api_access")


def setup_logging():
    """Configure logging for the application"""
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        force=True
    )

    # Service loggers follow LOG_LEVEL even if a library lowered the root level
    for name in LEDGER_LOGGERS:
        logging.getLogger(name).setLevel(level)

    # Silence noisy third-party libraries
    for name in ("stripe", "urllib3", "httpx", "sqlalchemy.engine"):
        logging.getLogger(name).setLevel(logging.WARNING)


# Export commonly used loggers
ledger_logger = logging.getLogger("ledger")
entitlement_logger = logging.getLogger("entitlements")
webhook_logger = logging.getLogger("webhook")
security_logger = logging.getLogger("security")
api_access_logger = logging.getLogger("api_access")
