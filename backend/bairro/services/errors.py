class MarketplaceError(Exception):
    """Base class for user-visible marketplace errors."""

    retryable = False


class ValidationError(MarketplaceError):
    """Rejected input; raised before any store call is made."""


class NotFoundError(MarketplaceError):
    pass


class PermissionDeniedError(MarketplaceError):
    pass


class LocationUnavailable(MarketplaceError):
    """Location permission was denied or resolution timed out."""

    retryable = True


class DiscoveryUnavailable(MarketplaceError):
    retryable = True


class ConversationCreateFailed(MarketplaceError):
    retryable = True


class MessageSendFailed(MarketplaceError):
    retryable = True


class ReviewSubmitFailed(MarketplaceError):
    retryable = True


class StoreUnavailable(MarketplaceError):
    retryable = True
