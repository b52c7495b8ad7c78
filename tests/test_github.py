from datetime import datetime

import pytest
import requests

from ghtriage.github import (
    GitHubClient,
    LinkHeaderError,
    MissingTokenError,
    RemoteNotification,
    format_http_date,
    pages_from_link,
    parse_notification,
    url_to_page,
)
from ghtriage.models import NotificationKind


def test_link_basic():
    link = '<https://api.github.com/notifications?page=2>; rel="next", <https://api.github.com/notifications?page=4>; rel="last"'
    assert pages_from_link(link) == [
        "https://api.github.com/notifications?page=2",
        "https://api.github.com/notifications?page=3",
        "https://api.github.com/notifications?page=4",
    ]


def test_link_next_is_last():
    link = '<https://api.github.com/notifications?page=2>; rel="next", <https://api.github.com/notifications?page=2>; rel="last"'
    assert pages_from_link(link) == ["https://api.github.com/notifications?page=2"]


def test_link_invalid():
    with pytest.raises(LinkHeaderError):
        pages_from_link("not a link")


def test_link_keeps_other_query_parameters():
    since = "all=true&since=2023-11-06T00%3A00%3A00Z"
    link = (
        f'<https://api.github.com/notifications?{since}&page=2>; rel="next", '
        f'<https://api.github.com/notifications?{since}&page=4>; rel="last"'
    )
    assert pages_from_link(link) == [
        f"https://api.github.com/notifications?{since}&page=2",
        f"https://api.github.com/notifications?{since}&page=3",
        f"https://api.github.com/notifications?{since}&page=4",
    ]


def test_url_to_page_requires_page():
    assert url_to_page("https://api.github.com/notifications?page=7") == 7
    with pytest.raises(LinkHeaderError):
        url_to_page("https://api.github.com/notifications")
    with pytest.raises(LinkHeaderError):
        url_to_page("https://api.github.com/notifications?page=x")


def test_parse_notification():
    notification = parse_notification(
        {
            "id": "42",
            "unread": True,
            "reason": "review_requested",
            "updated_at": "2025-01-19T08:43:54Z",
            "subject": {
                "title": "Fix the parser",
                "url": "https://api.github.com/repos/octo/widgets/pulls/3",
                "type": "PullRequest",
            },
            "repository": {"full_name": "octo/widgets"},
        }
    )
    assert notification.id == "42"
    assert notification.kind == NotificationKind.PULL_REQUEST
    assert notification.repo == "octo/widgets"
    assert notification.updated_at == datetime(2025, 1, 19, 8, 43, 54)
    assert notification.updated_at.tzinfo is None


def test_parse_notification_unknown_kind_without_url():
    notification = parse_notification(
        {
            "id": 7,
            "updated_at": "2025-01-19T08:43:54Z",
            "subject": {"title": "CI failed", "url": None, "type": "CheckSuite"},
            "repository": {"full_name": "octo/widgets"},
        }
    )
    assert notification.id == "7"
    assert notification.kind == NotificationKind.UNKNOWN
    assert notification.subject_url is None
    assert notification.unread is False


def test_format_http_date():
    assert format_http_date(datetime(2024, 5, 1, 12, 0, 0)) == "Wed, 01 May 2024 12:00:00 GMT"


def test_client_requires_token(settings):
    with pytest.raises(MissingTokenError):
        GitHubClient(settings.with_overrides(github_token=None))


def test_fetch_notifications_follows_pages(settings, fake_github):
    client = GitHubClient(settings)
    notifications = client.fetch_notifications()
    assert len(notifications) == 50
    assert len({notification.id for notification in notifications}) == 50
    assert fake_github.calls_for("GET") == ["/notifications", "/notifications?page=2"]
    assert fake_github.headers[0]["Authorization"] == "Bearer faketoken"


def test_fetch_notifications_since_uses_all(settings, fake_github):
    client = GitHubClient(settings)
    client.fetch_notifications(datetime(2024, 5, 1, 12, 0, 0))
    first = fake_github.calls_for("GET")[0]
    assert first == "/notifications?all=true&since=2024-05-01T12%3A00%3A00Z"


def test_fetch_details_groups_by_kind(settings):
    client = GitHubClient(settings)
    notifications = client.fetch_notifications()
    details = client.fetch_details(notifications)
    assert len(details.pulls) == 17
    assert len(details.issues) == 17
    assert len(details.releases) == 16
    release = next(iter(details.releases.values()))
    assert release.author


def test_fetch_details_keeps_notification_subject_url(settings, fake_github):
    subject_url = "https://api.github.com/repos/octo/widgets/pulls/3"
    notification = RemoteNotification(
        id="42",
        title="Fix the parser",
        kind=NotificationKind.PULL_REQUEST,
        subject_url=subject_url,
        repo="octo/widgets",
        reason="subscribed",
        unread=True,
        updated_at=datetime(2024, 5, 1, 12, 0, 0),
    )
    details = GitHubClient(settings).fetch_details([notification])
    assert list(details.pulls) == [subject_url]
    assert details.pulls[subject_url].html_url == "https://github.com/octo/widgets/pulls/3"
    assert fake_github.calls_for("GET") == ["/repos/octo/widgets/pulls/3"]


def test_check_update_without_watermark_skips_request(settings, fake_github):
    status = GitHubClient(settings).check_update_and_limit(None)
    assert status.need_update is True
    assert status.poll_interval == 60
    assert fake_github.calls == []


def test_check_update_not_modified(settings, fake_github):
    fake_github.poll_interval = 120
    status = GitHubClient(settings).check_update_and_limit(datetime(2024, 5, 1, 12, 0, 0))
    assert status.need_update is False
    assert status.poll_interval == 120
    assert status.ratelimit_remaining == 4999
    assert status.ratelimit_used == 1
    assert fake_github.headers[0]["If-Modified-Since"] == "Wed, 01 May 2024 12:00:00 GMT"


def test_mark_as_done_and_read(settings, fake_github):
    client = GitHubClient(settings)
    client.mark_as_done_many(["1", "2"])
    client.mark_as_read("3")
    assert sorted(fake_github.calls_for("DELETE")) == [
        "/notifications/threads/1",
        "/notifications/threads/2",
    ]
    assert fake_github.calls_for("PATCH") == ["/notifications/threads/3"]


def test_http_errors_propagate(settings):
    client = GitHubClient(settings)
    with pytest.raises(requests.HTTPError):
        client.request("GET", f"{settings.github_base_url}/nope")


def test_rewrite_url(settings):
    rewritten = settings.rewrite_url("https://api.github.com/repos/octo/widgets/pulls/3")
    assert rewritten == f"{settings.github_base_url}/repos/octo/widgets/pulls/3"
    assert settings.rewrite_url("https://example.com/x") == "https://example.com/x"
