"""Error taxonomy shared by fetchers, the scheduler and the dispatcher."""

from __future__ import annotations


class GovSyncError(Exception):
    """Root of all errors raised by govsync."""


# -----------------------------------------------------------------------------
# Fetch side: any of these is reported as a single "nok" to the rate controller
# -----------------------------------------------------------------------------
class FetchError(GovSyncError):
    """A scan attempt against an upstream failed."""


class UpstreamUnavailable(FetchError):
    """Network failure, timeout or 5xx from a node / GraphQL endpoint."""


class UpstreamRateLimited(FetchError):
    """Upstream answered 429 or an equivalent JSON-RPC limit error."""


class DecodeError(FetchError):
    """Upstream answered, but the payload could not be understood."""


class UnsupportedSource(FetchError):
    """No fetcher implementation exists for this handler kind."""


class NotYetMined(GovSyncError):
    """The requested block does not exist yet. Handled by the timestamp estimator."""

    def __init__(self, block_number: int):
        super().__init__(f"block {block_number} is not mined yet")
        self.block_number = block_number


# -----------------------------------------------------------------------------
# Delivery side: mapped onto retry-ladder events
# -----------------------------------------------------------------------------
class DeliveryError(GovSyncError):
    """An outbound channel did not accept a message."""


class DeliveryTransient(DeliveryError):
    """Retryable: timeout, 429, 5xx."""


class DeliveryRejected(DeliveryError):
    """The channel refused the message (bad webhook, bad payload, unsupported operation)."""


class DeliveryTargetGone(DeliveryRejected):
    """The webhook, chat or message no longer exists."""
