"""Exception taxonomy for the ShopGuard compliance scanner.

GenerationFailure:
    A language model call errored, or its structured response failed
    validation. Never partially accepted.

UpstreamFetchFailure:
    The storefront product feed could not be fetched or decoded.

PersistenceFailure:
    The SQLite store rejected a read or write.

The classifier and summarizer raise these and never retry; the site driver
decides whether a failure skips one product or aborts the run.
"""


class ShopGuardError(Exception):
    """Base class for all ShopGuard errors."""


class GenerationFailure(ShopGuardError):
    """A model call failed or returned a response outside its contract.

    Attributes:
        fatal: True when the failure means the provider is unusable for the
            whole run (bad credentials, unreachable endpoint, unknown model)
            rather than a problem with one request.
    """

    def __init__(self, message: str, *, fatal: bool = False):
        super().__init__(message)
        self.fatal = fatal


class UpstreamFetchFailure(ShopGuardError):
    """The product feed request failed or returned an unusable payload."""


class PersistenceFailure(ShopGuardError):
    """A database operation failed."""
