class SearchQuotaError(Exception):
    """Base exception for the quota engine."""

    pass


class WindowComputationError(SearchQuotaError):
    """Raised when a time window or period boundary cannot be computed."""

    pass


class IllegalTransitionError(SearchQuotaError):
    """Raised when a refused lifecycle transition must surface as an error."""

    def __init__(self, current: str, event: str):
        self.current = current
        self.event = event
        super().__init__(f"Cannot {event} a search that is {current}")
