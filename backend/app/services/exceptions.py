"""Notification dispatch errors."""


class DispatchError(Exception):
    """Base class for notification dispatch errors."""


class MessageResolutionError(DispatchError):
    """A message could not be rendered without leaking template syntax."""


class DeliveryError(DispatchError):
    """The delivery collaborator rejected or failed to send a notification."""


class UnknownRuleError(DispatchError):
    """A dispatch rule name does not exist in the rule table."""
