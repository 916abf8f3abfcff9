"""Prometheus metrics for the application"""
from prometheus_client import Counter, REGISTRY

# Duplicate registration happens when the module is re-imported (tests, reloads);
# reuse the collector already in the registry.

try:
    ledger_operations_counter = Counter(
        'reelcoin_ledger_operations_total',
        'Total number of ledger operations',
        ['operation', 'status']
    )
except ValueError:
    ledger_operations_counter = REGISTRY._names_to_collectors.get('reelcoin_ledger_operations_total')

try:
    content_tokens_moved_counter = Counter(
        'reelcoin_content_tokens_moved_total',
        'Content tokens moved by the ledger',
        ['type']
    )
except ValueError:
    content_tokens_moved_counter = REGISTRY._names_to_collectors.get('reelcoin_content_tokens_moved_total')

try:
    webhook_events_counter = Counter(
        'reelcoin_webhook_events_total',
        'Total number of payment webhook events received',
        ['event_type', 'status']
    )
except ValueError:
    webhook_events_counter = REGISTRY._names_to_collectors.get('reelcoin_webhook_events_total')

try:
    entitlement_denials_counter = Counter(
        'reelcoin_entitlement_denials_total',
        'Post entitlement checks that denied the caller',
        ['reason']
    )
except ValueError:
    entitlement_denials_counter = REGISTRY._names_to_collectors.get('reelcoin_entitlement_denials_total')
