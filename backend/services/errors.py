"""Exceptions raised by the discovery analysis services."""


class DiscoveryAnalyzerError(Exception):
    """Base class for errors raised by the analysis services."""


class ExternalFetchFailed(DiscoveryAnalyzerError):
    """Fetching items or changelogs from Jira failed."""

    def __init__(self, message: str, issue_key: str = None):
        super().__init__(message)
        self.issue_key = issue_key


class CacheWriteFailed(DiscoveryAnalyzerError):
    """Writing a single cycle record to the cache failed."""

    def __init__(self, issue_key: str, message: str):
        super().__init__(f"Failed to cache {issue_key}: {message}")
        self.issue_key = issue_key
