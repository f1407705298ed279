"""Exception types for ecrdump."""


class EcrDumpError(Exception):
    """Base class for all ecrdump errors."""


class FatalError(EcrDumpError):
    """Aborts the whole run."""


class AuthError(FatalError):
    """Credentials are missing, expired or not authorized."""


class ListingError(FatalError):
    """The account-wide repository listing could not be completed."""


class OutputError(FatalError):
    """The output sink cannot be opened or written to."""


class RecordError(EcrDumpError):
    """A failure contained to a single image or manifest."""


class FetchError(RecordError):
    """A registry call failed permanently."""


class ParseError(RecordError):
    """Registry content could not be interpreted."""


class TransientError(EcrDumpError):
    """Throttling or a transient network failure; safe to retry."""


class RunCancelled(EcrDumpError):
    """The run was cancelled before it finished."""
