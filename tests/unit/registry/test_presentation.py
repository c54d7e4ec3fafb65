from __future__ import annotations

import pytest

from atsync.registry import ShapeRegistry, build_view, internal_link, record_content, register_builtin_capabilities


@pytest.fixture
def registry() -> ShapeRegistry:
    return register_builtin_capabilities(ShapeRegistry())


def test_record_content_truncates(registry, make_record):
    record = make_record(text="abcdefghij")
    assert record_content(registry, record) == "abcdefghij"
    assert record_content(registry, record, max_length=4) == "abcd..."


def test_internal_link_only_for_full_view_shapes(registry, make_record):
    assert internal_link(registry, make_record("app.bsky.feed.post", "3kp")) == "/record/3kp"
    assert internal_link(registry, make_record("app.bsky.feed.like", "3kl")) is None
    assert internal_link(registry, make_record("com.example.other", "3ko")) is None


def test_build_view(registry, make_record, now):
    record = make_record("app.bsky.feed.post", "3kp", text="Hello there", tags=["a", "b"])

    view = build_view(registry, record, max_content_length=5)

    assert view.type_name == "Post"
    assert view.icon == "📝"
    assert view.content == "Hello..."
    assert view.internal_link == "/record/3kp"
    assert view.tags == ("a", "b")
    assert view.timestamp is not None
    assert view.timestamp < now
    assert view.author_handle is None
