"""Failure taxonomy of the realtime core."""


class RealtimeError(Exception):
    """Base class for realtime failures."""


class FetchError(RealtimeError):
    """A store read failed."""


class WriteError(RealtimeError):
    """A store write failed."""


class SubscriptionError(RealtimeError):
    """The transport could not establish a subscription."""
