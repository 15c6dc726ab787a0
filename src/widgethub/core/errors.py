"""Exception hierarchy for the widget hub."""


class WidgetHubError(Exception):
    """Base class for all widget hub errors."""


class DuplicateWidgetError(WidgetHubError, ValueError):
    """Raised when a url already has an active or in-flight registration."""

    def __init__(self, url: str) -> None:
        super().__init__(f"A widget with url '{url}' is already registered")
        self.url = url


class ManagerNotRunningError(WidgetHubError, RuntimeError):
    """Raised when the manager is used outside of its run context."""


class InvalidTopicError(WidgetHubError, ValueError):
    """Raised for empty or non-string topics."""


class ChannelError(WidgetHubError):
    """Base class for channel failures."""


class ChannelClosedError(ChannelError):
    """The channel has been released."""


class UndeclaredMethodError(ChannelError):
    """A remote method was used that the interface does not declare."""


class RemoteCallError(ChannelError):
    """The remote side failed while answering a request/response call."""


class InvalidWidgetUrlError(WidgetHubError, ValueError):
    """Raised for an empty widget url, which is reserved as the manager's sender marker."""
