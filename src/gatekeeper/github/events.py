"""GitHub pull_request webhook parsing.

Maps a verified `pull_request` payload into a NormalizedEvent for the
admission filter. Only actions that change what would be reviewed are
analyzed; everything else is ignored by returning None.

GitHub Webhook Payload Structure (pull_request event):
{
  "action": "opened",
  "number": 42,
  "pull_request": {
    "draft": false,
    "head": {"ref": "feature/x"},
    "base": {"ref": "main"},
    "labels": [{"name": "needs-review"}],
    "changed_files": 3
  },
  "repository": {"full_name": "owner/repo"},
  "installation": {"id": 4242}
}
"""

from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

import structlog

from src.gatekeeper.filters.models import NormalizedEvent
from src.gatekeeper.verification.models import RawWebhookRequest


logger = structlog.get_logger(__name__)

EVENT_HEADER = "x-github-event"
PULL_REQUEST_EVENT = "pull_request"


class PullRequestAction(str, Enum):
    """pull_request actions that trigger analysis.

    Attributes:
        OPENED: A pull request was created.
        SYNCHRONIZE: New commits were pushed to the head branch.
        READY_FOR_REVIEW: A draft was marked ready.
        REOPENED: A closed pull request was reopened.
    """

    OPENED = "opened"
    SYNCHRONIZE = "synchronize"
    READY_FOR_REVIEW = "ready_for_review"
    REOPENED = "reopened"


ANALYZED_ACTIONS: FrozenSet[str] = frozenset(action.value for action in PullRequestAction)


def should_analyze_action(action: Any) -> bool:
    return isinstance(action, str) and action in ANALYZED_ACTIONS


def _extract_labels(labels_data: Any) -> FrozenSet[str]:
    """Label names from GitHub's `[{"name": ...}]` array."""
    if not isinstance(labels_data, list):
        return frozenset()
    labels = set()
    for label in labels_data:
        if isinstance(label, dict):
            name = label.get("name")
            if isinstance(name, str) and name.strip():
                labels.add(name.strip())
        elif isinstance(label, str) and label.strip():
            labels.add(label.strip())
    return frozenset(labels)


def _ref(data: Any) -> str:
    if isinstance(data, dict) and isinstance(data.get("ref"), str):
        return data["ref"]
    return ""


def parse_pull_request_event(payload: Dict[str, Any]) -> Optional[NormalizedEvent]:
    """Parse a GitHub pull_request payload.

    Args:
        payload: The decoded webhook body.

    Returns:
        NormalizedEvent for analyzed actions, None otherwise. Returns None for:
        - Payloads that are not objects or lack a pull_request object
        - Actions outside ANALYZED_ACTIONS (closed, labeled, ...)
    """
    if not isinstance(payload, dict):
        logger.warning("Invalid payload: expected object", payload_type=type(payload).__name__)
        return None

    action = payload.get("action")
    if not should_analyze_action(action):
        logger.debug("Ignoring pull_request action", action=action)
        return None

    pr_data = payload.get("pull_request")
    if not isinstance(pr_data, dict):
        logger.warning("Missing or invalid 'pull_request' field in payload")
        return None

    number = payload.get("number", pr_data.get("number"))
    if not isinstance(number, int) or isinstance(number, bool) or number <= 0:
        number = None

    changed_files = pr_data.get("changed_files")
    if not isinstance(changed_files, int) or isinstance(changed_files, bool) or changed_files < 0:
        changed_files = 0

    repository = None
    repo_data = payload.get("repository")
    if isinstance(repo_data, dict) and isinstance(repo_data.get("full_name"), str):
        repository = repo_data["full_name"]

    scope_id = None
    installation = payload.get("installation")
    if isinstance(installation, dict) and installation.get("id") is not None:
        scope_id = str(installation["id"])

    event = NormalizedEvent(
        is_draft=pr_data.get("draft") is True,
        source_branch=_ref(pr_data.get("head")),
        target_branch=_ref(pr_data.get("base")),
        labels=_extract_labels(pr_data.get("labels")),
        changed_file_count=changed_files,
        scope_id=scope_id,
        repository=repository,
        number=number,
        action=action,
    )

    logger.debug(
        "Parsed pull_request event",
        action=action,
        repository=repository,
        number=number,
    )
    return event


def parse_github_webhook(
    payload: Any,
    request: RawWebhookRequest,
) -> Optional[NormalizedEvent]:
    """Event parser for GitHub integrations.

    Dispatches on the X-GitHub-Event header. Only pull_request is handled;
    when the header is absent the payload is tried as a pull_request.
    """
    event_type = request.header(EVENT_HEADER)
    if event_type is not None and event_type != PULL_REQUEST_EVENT:
        logger.debug("Ignoring GitHub event type", event_type=event_type)
        return None
    return parse_pull_request_event(payload)
