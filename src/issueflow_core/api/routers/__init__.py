"""API routers for Issueflow Core."""

from . import projects, issues, comments, notifications, events

__all__ = ["projects", "issues", "comments", "notifications", "events"]
