"""Error taxonomy for the scoring pipeline."""


class TrendScanError(Exception):
    """Base class for pipeline errors."""


class UpstreamFetchError(TrendScanError):
    """Scanning or metadata collaborator unreachable or erroring."""


class NoDataError(TrendScanError):
    """Token has no transactions or no metadata; nothing to score."""


class CacheError(TrendScanError):
    """Token cache store unreachable or failing."""
