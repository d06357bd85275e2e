# adaptive_chat/errors.py


class AdaptiveChatError(Exception):
    pass


class InvalidApiKey(AdaptiveChatError):
    """
    The provider rejected the credentials (or none were given).
    The caller must re-enter the key; never retried.
    """


class ProviderError(AdaptiveChatError):
    """
    Any other backend failure: rate limit, malformed request, timeout, network.
    """


class PersistenceError(AdaptiveChatError):
    pass


class DuplicateFeedback(AdaptiveChatError):
    pass


class NotFound(AdaptiveChatError):
    pass
