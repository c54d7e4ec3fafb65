from __future__ import annotations

from dataclasses import replace

import pytest

from atsync.data_primitives.records import Author, ResolvedSubject
from atsync.registry import ShapeRegistry, discovered_capability, register_builtin_capabilities


@pytest.fixture
def registry() -> ShapeRegistry:
    return register_builtin_capabilities(ShapeRegistry())


def test_post(registry, make_record):
    record = make_record("app.bsky.feed.post", "3kpost", text="Hello world", tags=["python"])
    capability = registry.resolve(record)

    assert capability.extract_content(record) == "Hello world"
    assert capability.extract_tags(record) == ["python"]
    assert capability.extract_link(record) == "https://bsky.app/profile/did:plc:alice123456789/post/3kpost"
    assert capability.extract_metadata(record) == {"replyCount": 0, "repostCount": 0, "likeCount": 0}


def test_post_link_prefers_author_handle(registry, make_record):
    author = Author(did="did:plc:a", handle="alice.test")
    record = replace(make_record("app.bsky.feed.post", "3kpost", text="x"), author=author)
    assert registry.resolve(record).extract_link(record) == "https://bsky.app/profile/alice.test/post/3kpost"


def test_like_without_subject(registry, make_record):
    record = make_record("app.bsky.feed.like", subject={"uri": "at://did:plc:bob/app.bsky.feed.post/3kb", "cid": "c"})
    capability = registry.resolve(record)

    assert capability.extract_content(record) == "Liked a post"
    assert capability.extract_link_text(record) == "View Profile on Bluesky →"
    assert capability.extract_metadata(record) == {
        "subjectUri": "at://did:plc:bob/app.bsky.feed.post/3kb",
        "subjectAuthor": None,
    }


def test_like_with_resolved_subject(registry, make_record):
    subject = ResolvedSubject(
        uri="at://did:plc:bob/app.bsky.feed.post/3kb",
        text="Bob's post",
        author=Author(did="did:plc:bob", handle="bob.test", display_name="Bob"),
    )
    record = replace(make_record("app.bsky.feed.repost"), resolved_subject=subject)
    capability = registry.resolve(record)

    assert capability.extract_content(record) == "Bob's post"
    assert capability.extract_link(record) == "https://bsky.app/profile/did:plc:bob/post/3kb"
    assert capability.extract_link_text(record) == "View Original Post on Bluesky →"
    assert capability.extract_description(record) == "🔄 Reposted a post by Bob"


def test_follow(registry, make_record):
    record = make_record("app.bsky.graph.follow", subject="did:plc:abcdefghijklmnop")
    assert registry.resolve(record).extract_content(record) == "Followed user (abcdefgh...)"


def test_blog_entry(registry, make_record):
    record = make_record("com.whtwnd.blog.entry", "3kblog", title="On caching", content="Long text")
    capability = registry.resolve(record)

    assert capability.extract_title(record) == "On caching"
    assert capability.extract_link(record) == "https://whtwnd.com/did:plc:alice123456789/3kblog"
    assert capability.extract_metadata(record) == {"visibility": "public", "wordCount": 9}


def test_profile_is_not_in_activity_feed(registry, make_record):
    record = make_record("app.bsky.actor.profile", "self", age=None, displayName="Alice")
    capability = registry.resolve(record)

    assert capability.extract_content(record) == "Updated profile: Alice"
    assert capability.show_in_activity_feed is False


def test_gallery(registry, make_record):
    record = make_record("social.grain.gallery", "3kgal", title="Trip")
    capability = registry.resolve(record)

    assert capability.extract_title(record) == "Trip"
    assert capability.extract_content(record) == "No description"
    assert capability.extract_link(record) == "https://grain.social/profile/did:plc:alice123456789/gallery/3kgal"


def test_discovered_capability(make_record):
    capability = discovered_capability("sh.tangled.feed.star", service="sh.tangled")

    assert capability.display_name == "Star"
    assert capability.description == "Discovered sh.tangled record shape"
    named = make_record("sh.tangled.feed.star", name="repo-name")
    assert capability.extract_title(named) == "repo-name"
    bare = make_record("sh.tangled.feed.star", age=None, subject="at://x")
    assert capability.extract_title(bare) == "Star"
    assert '"subject": "at://x"' in capability.extract_content(bare)
