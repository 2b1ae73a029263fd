"""Error taxonomy shared by the stores and aggregators."""

from __future__ import annotations


class FetchFailure(RuntimeError):
    """A base record set (profiles, watched or watchlist rows) could not be read.

    Aggregations abort on this error and the HTTP layer surfaces a single notice.
    """

    def __init__(self, source: str, message: str | None = None):
        self.source = source
        super().__init__(message or f"Unable to load {source}")


class ResolutionFailure(LookupError):
    """A single row's show or profile could not be resolved.

    Row-scoped: the lookup helpers catch it and apply the view's policy.
    """

    def __init__(self, kind: str, key: object, reason: str = "not found"):
        self.kind = kind
        self.key = key
        self.reason = reason
        super().__init__(f"{kind} {key!r} unresolved: {reason}")


class WriteFailure(RuntimeError):
    """A record could not be written to the store."""

    def __init__(self, target: str, message: str | None = None):
        self.target = target
        super().__init__(message or f"Unable to save {target}")
