"""GitHub provider integration.

- GitHubAppClient: installation token exchange and pull request file listing
- parse_pull_request_event: `pull_request` payload -> NormalizedEvent
"""

from src.gatekeeper.github.client import (
    GitHubAPIError,
    GitHubAppClient,
    RateLimitError,
    create_installation_headers,
    create_jwt_headers,
)
from src.gatekeeper.github.events import (
    ANALYZED_ACTIONS,
    PullRequestAction,
    parse_github_webhook,
    parse_pull_request_event,
    should_analyze_action,
)

__all__ = [
    "ANALYZED_ACTIONS",
    "GitHubAPIError",
    "GitHubAppClient",
    "PullRequestAction",
    "RateLimitError",
    "create_installation_headers",
    "create_jwt_headers",
    "parse_github_webhook",
    "parse_pull_request_event",
    "should_analyze_action",
]
