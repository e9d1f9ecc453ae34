"""Attribution and conversion reconciliation services."""

from app.services.click_ledger import ClickIdentifiers, ClickLedger
from app.services.credentials import CredentialManager
from app.services.efficiency import EfficiencyEvaluator, EfficiencyState
from app.services.forwarder import ConversionForwarder, ForwardResult
from app.services.ledger import AggregateLedger
from app.services.matcher import ConversionMatcher
from app.services.notifier import Notifier, WebhookNotifier
from app.services.order_events import CanonicalOrderEvent, MatchResult, PurchaseEvent
from app.services.reconciliation import ReconciliationResult, ReconciliationService

__all__ = [
    "AggregateLedger",
    "CanonicalOrderEvent",
    "ClickIdentifiers",
    "ClickLedger",
    "ConversionForwarder",
    "ConversionMatcher",
    "CredentialManager",
    "EfficiencyEvaluator",
    "EfficiencyState",
    "ForwardResult",
    "MatchResult",
    "Notifier",
    "PurchaseEvent",
    "ReconciliationResult",
    "ReconciliationService",
    "WebhookNotifier",
]
