from runledger.github.api import API
from runledger.github.client import (
    DownloadError,
    GitHubClient,
    GitHubTimeout,
    RateLimitPolicy,
    github_client,
)

__all__ = [
    "API",
    "DownloadError",
    "GitHubClient",
    "GitHubTimeout",
    "RateLimitPolicy",
    "github_client",
]
