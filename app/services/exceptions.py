"""Custom exceptions for the reconciliation core."""


class ReconciliationError(Exception):
    """Base exception for all reconciliation errors."""


class LinkNotFoundError(ReconciliationError):
    """Raised when a tracking link is unknown or archived."""

    def __init__(self, link_code: str):
        self.link_code = link_code
        super().__init__(f"Tracking link not found: {link_code}")


class ClickNotFoundError(ReconciliationError):
    """Raised when a click id does not resolve to a stored click."""

    def __init__(self, click_id: str):
        self.click_id = click_id
        super().__init__(f"Click not found: {click_id}")


class AmbiguousMatchError(ReconciliationError):
    """Raised when a campaign label resolves to more than one active link."""

    def __init__(self, campaign_label: str, link_ids: list[str]):
        self.campaign_label = campaign_label
        self.link_ids = link_ids
        super().__init__(
            f"Campaign label '{campaign_label}' matches {len(link_ids)} links: {link_ids}"
        )


class InvalidOrderEventError(ReconciliationError):
    """Raised for order events that cannot be reconciled."""


class ForwardError(ReconciliationError):
    """Base exception for outbound conversion forwarding failures."""


class CredentialExpiredError(ForwardError):
    """Raised when a channel credential is expired and cannot be refreshed."""

    def __init__(self, channel_id: object, reason: str = "token expired"):
        self.channel_id = channel_id
        self.reason = reason
        super().__init__(f"Credential expired for channel={channel_id}: {reason}")


class TransientUpstreamError(ForwardError):
    """Raised when an ad platform stays unavailable after all retries."""


class ForwardRejectedError(ForwardError):
    """Raised when an ad platform rejects an event (non-retryable 4xx)."""

    def __init__(self, status: int, body: str):
        self.status = status
        self.body = body
        super().__init__(f"HTTP {status} (non-retryable): {body[:500]}")
