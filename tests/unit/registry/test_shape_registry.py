from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pytest

from atsync.data_primitives.records import PresentationMode
from atsync.registry import FALLBACK_CAPABILITY, ShapeCapability, ShapeRegistry, register_builtin_capabilities
from atsync.registry.base import DEFAULT_CONTENT, DEFAULT_TITLE
from atsync.registry.registry import UNSUPPORTED_TYPE


@dataclass
class FakeEntryPoint:
    name: str
    target: Any

    def load(self) -> Any:
        if isinstance(self.target, Exception):
            raise self.target
        return self.target


def _capability(shape_id: str, **kwargs: Any) -> ShapeCapability:
    return ShapeCapability(shape_id=shape_id, display_name=shape_id.rsplit(".", 1)[-1].title(), **kwargs)


@pytest.fixture
def registry() -> ShapeRegistry:
    return register_builtin_capabilities(ShapeRegistry())


def test_resolve_is_total(registry, make_record):
    record = make_record("com.example.unknown", text="hello")

    capability = registry.resolve(record)

    assert capability is FALLBACK_CAPABILITY
    assert capability.extract_title(record) == UNSUPPORTED_TYPE
    assert '"text": "hello"' in capability.extract_content(record)
    assert not capability.show_in_activity_feed


def test_resolve_exact_match(registry, make_record):
    record = make_record("app.bsky.feed.post", text="hello")
    assert registry.resolve(record).display_name == "Post"


def test_get_unknown_shape_raises(registry):
    with pytest.raises(KeyError, match="Unknown shape: 'com.example.missing'"):
        registry.get("com.example.missing")


def test_register_is_last_write_wins(registry):
    registry.register("app.bsky.feed.post", _capability("app.bsky.feed.post", icon="X"))
    assert registry.get("app.bsky.feed.post").icon == "X"


def test_unregister(registry):
    assert registry.unregister("app.bsky.feed.like") is True
    assert "app.bsky.feed.like" not in registry
    assert registry.unregister("app.bsky.feed.like") is False


def test_failing_extractor_returns_defaults(make_record):
    def boom(_record):
        raise RuntimeError("broken extractor")

    capability = _capability("com.example.thing", get_title=boom, get_content=boom, get_tags=boom, get_metadata=boom)
    record = make_record("com.example.thing")

    assert capability.extract_title(record) == DEFAULT_TITLE
    assert capability.extract_content(record) == DEFAULT_CONTENT
    assert capability.extract_tags(record) == []
    assert capability.extract_metadata(record) == {}


def test_missing_extractors_use_fallbacks(make_record):
    capability = _capability("com.example.thing")
    record = make_record("com.example.thing")

    assert capability.extract_title(record) == "Thing"
    assert capability.extract_content(record) == DEFAULT_CONTENT
    assert capability.extract_link(record) == "https://bsky.app/profile/did:plc:alice123456789"
    assert capability.extract_timestamp(record) == record.indexed_at


def test_single_string_tag_is_wrapped(make_record):
    capability = _capability("com.example.thing", get_tags=lambda record: record.value["tag"])
    assert capability.extract_tags(make_record("com.example.thing", tag="solo")) == ["solo"]


def test_list_filters(registry):
    activity = {c.shape_id for c in registry.list_activity_capable()}
    content = {c.shape_id for c in registry.list_content_capable()}
    full = {c.shape_id for c in registry.list_by_presentation_mode(PresentationMode.FULL)}

    assert "app.bsky.actor.profile" not in activity
    assert {"app.bsky.feed.post", "app.bsky.feed.like", "com.whtwnd.blog.entry"} <= activity
    assert content == {"com.whtwnd.blog.entry", "social.grain.gallery"}
    assert full == {"app.bsky.feed.post", "com.whtwnd.blog.entry", "social.grain.gallery"}


def test_load_plugins(monkeypatch):
    single = _capability("com.example.single")
    factory_items = [_capability("com.example.one"), _capability("com.example.two")]
    eps = [
        FakeEntryPoint("single", single),
        FakeEntryPoint("factory", lambda: factory_items),
        FakeEntryPoint("broken", ImportError("missing module")),
        FakeEntryPoint("wrong", lambda: ["not a capability"]),
    ]
    monkeypatch.setattr("atsync.registry.registry.entry_points", lambda group: eps)
    registry = ShapeRegistry()

    loaded = registry.load_plugins()

    assert loaded == 3
    assert sorted(registry) == ["com.example.one", "com.example.single", "com.example.two"]


def test_len_and_repr(registry):
    assert len(registry) == 7
    assert "app.bsky.feed.post" in repr(registry)
