"""Exception types shared across the poller."""


class CertwatchError(Exception):
    """Base class for poller errors."""


class SessionError(CertwatchError):
    """No usable anti-forgery token (or landing page) could be obtained."""


class TransportError(CertwatchError):
    """Network-level fault such as a timeout or a reset connection."""
