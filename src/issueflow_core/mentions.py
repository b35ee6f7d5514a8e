"""@username mention extraction from comment text."""
import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional

from . import models

logger = logging.getLogger("issueflow-core.mentions")

# @ followed by 3-50 ASCII letters, digits or underscores (the username charset)
MENTION_PATTERN = re.compile(r"@([a-zA-Z0-9_]{3,50})")

UserLookup = Callable[[str], Optional[models.User]]


@dataclass(frozen=True)
class ResolvedMention:
    """A handle found in the text together with the user it resolved to."""

    handle: str
    user: models.User


def scan_handles(text: Optional[str], author_handle: Optional[str] = None) -> list[str]:
    """
    Find mentioned handles in order of first appearance.

    Repeated handles collapse to their first occurrence and the author's own
    handle is dropped. Matching is case-sensitive.

    Args:
        text: Comment content
        author_handle: Username of the comment author

    Returns:
        Ordered, de-duplicated list of handles (without the ``@``)
    """
    if not text:
        return []

    handles = []
    seen = set()
    for match in MENTION_PATTERN.finditer(text):
        handle = match.group(1)
        if handle in seen:
            continue
        seen.add(handle)
        if handle == author_handle:
            logger.debug(f"Skipping self-mention: @{handle}")
            continue
        handles.append(handle)
    return handles


def extract_mentions(
    text: Optional[str],
    author: models.User,
    lookup: UserLookup,
) -> list[ResolvedMention]:
    """
    Resolve the handles mentioned in ``text`` to users.

    Handles that do not resolve are dropped silently. Calling this twice on
    the same text yields the same ordered result.

    Args:
        text: Comment content
        author: Comment author (never mentioned)
        lookup: Resolves a handle to a user or None

    Returns:
        Resolved mentions, in order of first appearance
    """
    resolved = []
    seen_user_ids = set()
    for handle in scan_handles(text, author.username):
        user = lookup(handle)
        if user is None:
            logger.debug(f"Ignoring unknown handle: @{handle}")
            continue
        if user.id == author.id or user.id in seen_user_ids:
            continue
        seen_user_ids.add(user.id)
        resolved.append(ResolvedMention(handle=handle, user=user))
    return resolved
