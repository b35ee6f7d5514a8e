"""Tests for @mention extraction."""
from uuid import uuid4

from issueflow_core import models
from issueflow_core.mentions import extract_mentions, scan_handles


def _user(username, full_name=None):
    return models.User(id=uuid4(), username=username, email=f"{username}@example.com", full_name=full_name)


class _Directory:
    """Handle lookup over a fixed set of users, counting calls."""

    def __init__(self, *users):
        self.users = {user.username: user for user in users}
        self.lookups = []

    def __call__(self, handle):
        self.lookups.append(handle)
        return self.users.get(handle)


class TestScanHandles:
    """Test the raw handle scan."""

    def test_finds_handles_in_order(self):
        assert scan_handles("ping @bob and @alice please") == ["bob", "alice"]

    def test_duplicates_collapse_to_first_occurrence(self):
        assert scan_handles("@bob @carol @bob") == ["bob", "carol"]

    def test_author_excluded(self):
        assert scan_handles("hi @author", "author") == []
        assert scan_handles("@author meet @bob", "author") == ["bob"]

    def test_handles_are_case_sensitive(self):
        assert scan_handles("@Bob @bob") == ["Bob", "bob"]

    def test_short_handles_ignored(self):
        assert scan_handles("@al is too short, @ali is fine") == ["ali"]

    def test_handle_stops_at_punctuation(self):
        assert scan_handles("Thanks @carol, great work @carol!") == ["carol"]

    def test_long_handle_truncated_to_fifty_chars(self):
        handle = "a" * 60
        assert scan_handles(f"@{handle}") == ["a" * 50]

    def test_email_addresses_match_domain_part(self):
        assert scan_handles("mail me at someone@example.com") == ["example"]

    def test_empty_text(self):
        assert scan_handles("") == []
        assert scan_handles(None) == []


class TestExtractMentions:
    """Test resolving handles to users."""

    def test_self_mention_yields_nothing(self):
        author = _user("author")
        directory = _Directory(author)
        assert extract_mentions("hi @author", author, directory) == []

    def test_duplicate_mentions_collapse(self):
        author, bob = _user("dave"), _user("bob")
        resolved = extract_mentions("@bob @bob", author, _Directory(author, bob))
        assert [m.user for m in resolved] == [bob]

    def test_unknown_handles_dropped_silently(self):
        author, bob = _user("dave"), _user("bob")
        resolved = extract_mentions("@ghost and @bob", author, _Directory(author, bob))
        assert [m.handle for m in resolved] == ["bob"]

    def test_each_handle_looked_up_once(self):
        author, bob = _user("dave"), _user("bob")
        directory = _Directory(author, bob)
        extract_mentions("@bob @bob @bob", author, directory)
        assert directory.lookups == ["bob"]

    def test_extraction_is_idempotent(self):
        author = _user("dave")
        directory = _Directory(author, _user("alice"), _user("carol"), _user("bob"))
        text = "@carol can you pair with @alice? cc @bob @carol"

        first = extract_mentions(text, author, directory)
        second = extract_mentions(text, author, directory)

        assert [m.handle for m in first] == ["carol", "alice", "bob"]
        assert first == second

    def test_handles_resolving_to_same_user_collapse(self):
        author, bob = _user("dave"), _user("bob")

        def lookup(handle):
            return bob if handle.lower() == "bob" else None

        resolved = extract_mentions("@bob @BOB", author, lookup)
        assert len(resolved) == 1
