from ghtriage.filters import SearchFilter, parse
from ghtriage.models import NotificationState


def test_parse_prefixes():
    search = parse("title:parser author:JohnDoe repo:octo/widgets state:merged")
    assert search.title == "parser"
    assert search.author == "JohnDoe"
    assert search.repo == "octo/widgets"
    assert search.state == NotificationState.RESOLVED
    assert search.words == ()


def test_bare_words():
    search = parse("  rust   programming ")
    assert search.words == ("rust", "programming")
    assert search.title == ""


def test_title_parts_are_joined():
    assert parse("title:fix title:parser").title == "fix parser"


def test_unknown_state_clears_filter():
    assert parse("state:weird").state is None
    assert parse("state:open state:weird").state is None


def test_empty_query():
    assert parse("") == SearchFilter()
    assert parse("").is_empty
    assert not parse("author:bob").is_empty
