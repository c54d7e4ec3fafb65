"""Built-in capabilities for well-known record shapes.

Nothing registers on import; call :func:`register_builtin_capabilities`.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from atsync.data_primitives.records import AtUri, PresentationMode, RecordEnvelope
from atsync.registry.base import ShapeCapability, profile_link, record_actor
from atsync.registry.registry import ShapeRegistry
from atsync.utils.text import json_summary, short_did

POST = "app.bsky.feed.post"
LIKE = "app.bsky.feed.like"
REPOST = "app.bsky.feed.repost"
FOLLOW = "app.bsky.graph.follow"
PROFILE = "app.bsky.actor.profile"
WHTWND_BLOG_ENTRY = "com.whtwnd.blog.entry"
GRAIN_GALLERY = "social.grain.gallery"

ALL_MODES = frozenset(PresentationMode)
COMPACT_EXPANDED = frozenset({PresentationMode.COMPACT, PresentationMode.EXPANDED})


def _subject_uri(record: RecordEnvelope) -> str | None:
    if record.resolved_subject is not None:
        return record.resolved_subject.uri
    subject = record.value.get("subject")
    if isinstance(subject, str):
        return subject
    if isinstance(subject, Mapping) and isinstance(subject.get("uri"), str):
        return subject["uri"]
    return None


def _subject_post_link(record: RecordEnvelope) -> str:
    if record.resolved_subject is not None:
        uri = AtUri.try_parse(record.resolved_subject.uri)
        if uri is not None:
            return f"https://bsky.app/profile/{uri.repository}/post/{uri.record_key}"
    return profile_link(record)


def _subject_link_text(record: RecordEnvelope) -> str:
    if record.resolved_subject is not None:
        return "View Original Post on Bluesky →"
    return "View Profile on Bluesky →"


def _subject_metadata(record: RecordEnvelope) -> dict[str, Any]:
    author = record.resolved_subject.author if record.resolved_subject else None
    return {
        "subjectUri": _subject_uri(record),
        "subjectAuthor": author.handle if author else None,
    }


def _interaction_capability(shape_id: str, name: str, icon: str, verb: str, default_content: str) -> ShapeCapability:
    def content(record: RecordEnvelope) -> str:
        if record.resolved_subject is not None and record.resolved_subject.text:
            return record.resolved_subject.text
        return default_content

    def description(record: RecordEnvelope) -> str:
        author = record.resolved_subject.author if record.resolved_subject else None
        if author is not None:
            return f"{icon} {verb} a post by {author.name}"
        return f"{icon} {verb} a post"

    return ShapeCapability(
        shape_id=shape_id,
        display_name=name,
        icon=icon,
        description=f"A user's '{name.lower()}' of another record.",
        get_title=lambda _record: name,
        get_content=content,
        get_link=_subject_post_link,
        get_link_text=_subject_link_text,
        get_metadata=_subject_metadata,
        get_description=description,
        presentation_modes=COMPACT_EXPANDED,
        show_in_activity_feed=True,
        show_in_content_feed=False,
    )


def _follow_content(record: RecordEnvelope) -> str:
    subject = record.value.get("subject")
    if isinstance(subject, str) and subject:
        return f"Followed user ({short_did(subject)})"
    return "Followed someone"


def _profile_content(record: RecordEnvelope) -> str:
    display_name = record.value.get("displayName")
    if display_name:
        return f"Updated profile: {display_name}"
    return "Updated profile"


def _gallery_link(record: RecordEnvelope) -> str:
    return f"https://grain.social/profile/{record_actor(record)}/gallery/{record.record_key}"


BUILTIN_CAPABILITIES: tuple[ShapeCapability, ...] = (
    ShapeCapability(
        shape_id=POST,
        display_name="Post",
        icon="📝",
        description="A standard post on the Bluesky social network.",
        get_title=lambda _record: "Post",
        get_content=lambda record: record.value.get("text") or "No content",
        get_tags=lambda record: record.value.get("tags") or (),
        get_link=lambda record: f"https://bsky.app/profile/{record_actor(record)}/post/{record.record_key}",
        get_link_text=lambda _record: "View Post on Bluesky →",
        get_metadata=lambda record: {
            "replyCount": record.value.get("replyCount") or 0,
            "repostCount": record.value.get("repostCount") or 0,
            "likeCount": record.value.get("likeCount") or 0,
        },
        presentation_modes=ALL_MODES,
        show_in_activity_feed=True,
        show_in_content_feed=False,
    ),
    _interaction_capability(LIKE, "Like", "❤️", "Liked", "Liked a post"),
    _interaction_capability(REPOST, "Repost", "🔄", "Reposted", "Reposted a post"),
    ShapeCapability(
        shape_id=FOLLOW,
        display_name="Follow",
        icon="👥",
        description="A record of a user following another user.",
        get_title=lambda _record: "Follow",
        get_content=_follow_content,
        get_link_text=lambda _record: "View Profile on Bluesky →",
        get_metadata=lambda record: {"followedDid": record.value.get("subject") or None},
        presentation_modes=COMPACT_EXPANDED,
        show_in_activity_feed=True,
        show_in_content_feed=False,
    ),
    ShapeCapability(
        shape_id=WHTWND_BLOG_ENTRY,
        display_name="Blog Post",
        icon="📰",
        description="A long-form blog post using the WhiteWind lexicon.",
        get_title=lambda record: record.value.get("title") or "Untitled Post",
        get_content=lambda record: record.value.get("content") or record.value.get("text") or "No content",
        get_tags=lambda record: record.value.get("tags") or (),
        get_link=lambda record: f"https://whtwnd.com/{record_actor(record)}/{record.record_key}",
        get_link_text=lambda _record: "Read on WhiteWind →",
        get_metadata=lambda record: {
            "visibility": record.value.get("visibility") or "public",
            "wordCount": len(record.value.get("content") or ""),
        },
        presentation_modes=ALL_MODES,
        show_in_activity_feed=True,
        show_in_content_feed=True,
    ),
    ShapeCapability(
        shape_id=PROFILE,
        display_name="Profile Update",
        icon="👤",
        description="A user's profile information.",
        get_title=lambda _record: "Profile Update",
        get_content=_profile_content,
        get_link_text=lambda _record: "View Profile on Bluesky →",
        get_metadata=lambda record: {
            "displayName": record.value.get("displayName") or None,
            "description": record.value.get("description") or None,
        },
        presentation_modes=COMPACT_EXPANDED,
        # Profile records carry no reliable creation time.
        show_in_activity_feed=False,
        show_in_content_feed=False,
    ),
    ShapeCapability(
        shape_id=GRAIN_GALLERY,
        display_name="Gallery",
        icon="🖼️",
        description="A Grain.social image gallery.",
        get_title=lambda record: record.value.get("title") or "Untitled Gallery",
        get_content=lambda record: record.value.get("description") or "No description",
        get_link=_gallery_link,
        get_link_text=lambda _record: "View Gallery on Grain →",
        get_metadata=lambda record: {"updatedAt": record.value.get("updatedAt")},
        presentation_modes=ALL_MODES,
        show_in_activity_feed=True,
        show_in_content_feed=True,
    ),
)


def register_builtin_capabilities(registry: ShapeRegistry) -> ShapeRegistry:
    registry.register_all(BUILTIN_CAPABILITIES)
    return registry


def _humanize(shape_id: str) -> str:
    last = shape_id.rsplit(".", 1)[-1]
    words = [part for part in last.replace("_", " ").replace("-", " ").split() if part]
    spaced = " ".join(words) or shape_id
    return spaced[:1].upper() + spaced[1:]


def _discovered_icon(shape_id: str) -> str:
    if "gallery" in shape_id or "grain" in shape_id or "photo" in shape_id:
        return "🖼️"
    if "post" in shape_id or "feed" in shape_id or "entry" in shape_id:
        return "📝"
    if "profile" in shape_id or "actor" in shape_id:
        return "👤"
    return "📋"


def _discovered_title(display_name: str) -> Callable[[RecordEnvelope], str]:
    def title(record: RecordEnvelope) -> str:
        for key in ("title", "name", "displayName"):
            value = record.value.get(key)
            if isinstance(value, str) and value:
                return value
        return display_name

    return title


def _discovered_content(record: RecordEnvelope) -> str:
    for key in ("text", "content", "description"):
        value = record.value.get(key)
        if isinstance(value, str) and value:
            return value
    return json_summary(record.value)


def discovered_capability(shape_id: str, *, service: str = "unknown") -> ShapeCapability:
    """Generic capability for a shape first seen during discovery."""
    display_name = _humanize(shape_id)
    return ShapeCapability(
        shape_id=shape_id,
        display_name=display_name,
        icon=_discovered_icon(shape_id),
        description=f"Discovered {service} record shape",
        get_title=_discovered_title(display_name),
        get_content=_discovered_content,
        presentation_modes=COMPACT_EXPANDED,
        show_in_activity_feed=False,
        show_in_content_feed=False,
    )


__all__ = [
    "BUILTIN_CAPABILITIES",
    "FOLLOW",
    "GRAIN_GALLERY",
    "LIKE",
    "POST",
    "PROFILE",
    "REPOST",
    "WHTWND_BLOG_ENTRY",
    "discovered_capability",
    "register_builtin_capabilities",
]
