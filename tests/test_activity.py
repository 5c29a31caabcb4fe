"""Unit tests for the activity/ package.

Covers:
- User-Agent classification (last matching pattern wins)
- client address precedence across proxy headers
- description text and page labels
- ActivityLogger.record() validation and persistence
- ActivityLogger.recent() ordering, filtering and username resolution
"""

import pytest

from activity.client import UNKNOWN_BROWSER, UNKNOWN_OS, classify_browser, classify_os, client_ip
from activity.logger import ActivityLogger, describe
from activity.models import ClientInfo
from store.records import RecordStore
from store.schema import logs, users

CHROME_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
FIREFOX_UBUNTU = "Mozilla/5.0 (X11; Ubuntu; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0"
SAFARI_IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
CHROME_ANDROID = (
    "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36"
)


# ---------------------------------------------------------------------------
# Client classification
# ---------------------------------------------------------------------------


class TestClassification:
    @pytest.mark.parametrize(
        "ua, os_name, browser",
        [
            (CHROME_WINDOWS, "Windows 10", "Chrome"),
            (FIREFOX_UBUNTU, "Ubuntu", "Firefox"),
            (SAFARI_IPHONE, "iPhone", "Handheld"),
            (CHROME_ANDROID, "Android", "Handheld"),
        ],
    )
    def test_known_agents(self, ua: str, os_name: str, browser: str) -> None:
        assert classify_os(ua) == os_name
        assert classify_browser(ua) == browser

    def test_unknown_agent(self) -> None:
        assert classify_os("curl/8.4.0") == UNKNOWN_OS
        assert classify_browser("curl/8.4.0") == UNKNOWN_BROWSER
        assert classify_os(None) == UNKNOWN_OS
        assert classify_browser("") == UNKNOWN_BROWSER


class TestClientIp:
    def test_header_precedence(self) -> None:
        headers = {"X-Forwarded-For": "203.0.113.9", "Client-IP": "198.51.100.1"}
        assert client_ip(headers, "127.0.0.1") == "198.51.100.1"

    def test_forwarded_for_list_is_reported_as_sent(self) -> None:
        assert client_ip({"x-forwarded-for": "203.0.113.9, 10.0.0.1"}) == "203.0.113.9, 10.0.0.1"

    def test_falls_back_to_peer_then_unknown(self) -> None:
        assert client_ip({}, "192.0.2.4") == "192.0.2.4"
        assert client_ip({}) == "UNKNOWN"


# ---------------------------------------------------------------------------
# Descriptions
# ---------------------------------------------------------------------------


class TestDescribe:
    def test_login_and_logout(self) -> None:
        assert describe("login", "login") == "Log user in"
        assert describe("logout", "logout") == "Log user out"

    def test_other_actions(self) -> None:
        assert describe("event", "delete", "Easter") == "Delete event Easter"
        assert describe("team", "view") == "View team"


# ---------------------------------------------------------------------------
# ActivityLogger
# ---------------------------------------------------------------------------


def _add_user(records: RecordStore, username: str) -> int:
    return records.insert(users, ["username", "password"], [username, "h"]).inserted_id


class TestActivityLogger:
    def test_record_persists_row(self, records: RecordStore) -> None:
        activity = ActivityLogger(records)
        entry = activity.record(
            3, "delete", "succeeded", "Easter", page="events", client=ClientInfo("10.1.1.1", CHROME_WINDOWS)
        )
        assert entry.id is not None
        row = records.fetch_one(logs, "*", logs.c.id == entry.id).unwrap()
        assert row["userID"] == 3
        assert row["page"] == "event"
        assert row["actionType"] == "delete"
        assert row["activityStatus"] == "succeeded"
        assert row["description"] == "Delete event Easter"
        assert row["userIP"] == "10.1.1.1"
        assert row["userOS"] == "Windows 10"
        assert row["userBrowser"] == "Chrome"
        assert row["dateTime"]

    def test_unlabelled_page_passes_through(self, records: RecordStore) -> None:
        entry = ActivityLogger(records).record(1, "view", "succeeded", page="settings")
        assert entry.page == "settings"

    def test_missing_client_defaults(self, records: RecordStore) -> None:
        entry = ActivityLogger(records).record(None, "login", "failed")
        assert (entry.ip, entry.os, entry.browser) == ("UNKNOWN", UNKNOWN_OS, UNKNOWN_BROWSER)

    def test_rejects_unknown_action_and_status(self, records: RecordStore) -> None:
        activity = ActivityLogger(records)
        with pytest.raises(ValueError):
            activity.record(1, "explode", "succeeded")
        with pytest.raises(ValueError):
            activity.record(1, "login", "maybe")
        assert records.count(logs) == 0

    def test_recent_newest_first_with_usernames(self, records: RecordStore) -> None:
        alice = _add_user(records, "alice")
        bob = _add_user(records, "bob")
        activity = ActivityLogger(records)
        activity.record(alice, "login", "succeeded")
        activity.record(bob, "login", "failed")
        activity.record(None, "login", "failed")

        entries = activity.recent()
        assert [e.user_id for e in entries] == [None, bob, alice]
        assert [e.username for e in entries] == [None, "bob", "alice"]

    def test_recent_filters_and_limits(self, records: RecordStore) -> None:
        alice = _add_user(records, "alice")
        bob = _add_user(records, "bob")
        activity = ActivityLogger(records)
        for _ in range(3):
            activity.record(alice, "login", "succeeded")
        activity.record(bob, "login", "succeeded")

        mine = activity.recent(user_id=alice)
        assert len(mine) == 3
        assert {e.username for e in mine} == {"alice"}
        assert len(activity.recent(limit=2)) == 2
