"""Tests for hahaha.cache.resource_cache: apply-if-newer, relist diff, notifications."""

from __future__ import annotations

from typing import TYPE_CHECKING

from hahaha.cache.resource_cache import ResourceCache
from hahaha.models.resources import CacheReadiness, ChangeKind, ResourceKey

if TYPE_CHECKING:
    from conftest import SnapshotFactory

WIDGET = ResourceKey("default", "widget-1")


def _recording_cache() -> tuple[ResourceCache, list[tuple[ResourceKey, ChangeKind]]]:
    cache = ResourceCache()
    seen: list[tuple[ResourceKey, ChangeKind]] = []
    cache.subscribe(lambda key, kind: seen.append((key, kind)))
    return cache, seen


class TestApply:
    def test_new_key_notifies_added(self, snapshot: SnapshotFactory) -> None:
        cache, seen = _recording_cache()
        assert cache.apply(snapshot(name="widget-1", resource_version="1"))
        assert seen == [(WIDGET, ChangeKind.ADDED)]
        assert cache.get(WIDGET) is not None

    def test_newer_version_notifies_modified(self, snapshot: SnapshotFactory) -> None:
        cache, seen = _recording_cache()
        cache.apply(snapshot(name="widget-1", resource_version="1"))
        cache.apply(snapshot(name="widget-1", resource_version="2"))
        assert seen[-1] == (WIDGET, ChangeKind.MODIFIED)
        assert cache.get(WIDGET).resource_version == "2"  # type: ignore[union-attr]

    def test_stale_event_is_a_no_op(self, snapshot: SnapshotFactory) -> None:
        cache, seen = _recording_cache()
        cache.apply(snapshot(name="widget-1", resource_version="5"))
        seen.clear()

        assert not cache.apply(snapshot(name="widget-1", resource_version="3"))
        assert cache.get(WIDGET).resource_version == "5"  # type: ignore[union-attr]
        assert seen == []

    def test_duplicate_event_is_a_no_op(self, snapshot: SnapshotFactory) -> None:
        cache, seen = _recording_cache()
        cache.apply(snapshot(name="widget-1", resource_version="5"))
        assert not cache.apply(snapshot(name="widget-1", resource_version="5"))
        assert len(seen) == 1

    def test_watermark_advances(self, snapshot: SnapshotFactory) -> None:
        cache = ResourceCache()
        cache.apply(snapshot(name="a", resource_version="7"))
        cache.apply(snapshot(name="b", resource_version="4"))
        assert cache.resource_version == "7"


class TestRemove:
    def test_remove_notifies_deleted(self, snapshot: SnapshotFactory) -> None:
        cache, seen = _recording_cache()
        cache.apply(snapshot(name="widget-1", resource_version="1"))
        assert cache.remove(WIDGET, "2")
        assert seen[-1] == (WIDGET, ChangeKind.DELETED)
        assert WIDGET not in cache

    def test_stale_delete_ignored(self, snapshot: SnapshotFactory) -> None:
        cache, seen = _recording_cache()
        cache.apply(snapshot(name="widget-1", resource_version="9"))
        assert not cache.remove(WIDGET, "4")
        assert WIDGET in cache

    def test_remove_unknown_key(self) -> None:
        cache, seen = _recording_cache()
        assert not cache.remove(WIDGET, "3")
        assert seen == []
        assert cache.resource_version == "3"


class TestReplaceAll:
    def test_first_list_marks_ready(self, snapshot: SnapshotFactory) -> None:
        cache, seen = _recording_cache()
        assert cache.readiness() is CacheReadiness.WARMING
        counts = cache.replace_all([snapshot(name="a"), snapshot(name="b")], "10")
        assert counts == {"added": 2, "modified": 0, "deleted": 0}
        assert cache.has_synced
        assert cache.readiness() is CacheReadiness.READY
        assert cache.resource_version == "10"
        assert len(seen) == 2

    def test_diff_synthesizes_lost_window(self, snapshot: SnapshotFactory) -> None:
        cache, seen = _recording_cache()
        cache.replace_all(
            [
                snapshot(name="kept", resource_version="1"),
                snapshot(name="changed", resource_version="2"),
                snapshot(name="gone", resource_version="3"),
            ],
            "3",
        )
        seen.clear()

        cache.replace_all(
            [
                snapshot(name="kept", resource_version="1"),
                snapshot(name="changed", resource_version="8"),
                snapshot(name="new", resource_version="9"),
            ],
            "9",
        )

        assert sorted(seen) == sorted(
            [
                (ResourceKey("default", "changed"), ChangeKind.MODIFIED),
                (ResourceKey("default", "new"), ChangeKind.ADDED),
                (ResourceKey("default", "gone"), ChangeKind.DELETED),
            ]
        )
        assert ResourceKey("default", "gone") not in cache

    def test_never_regresses_an_entry(self, snapshot: SnapshotFactory) -> None:
        cache = ResourceCache()
        cache.apply(snapshot(name="widget-1", resource_version="12"))
        cache.replace_all([snapshot(name="widget-1", resource_version="10")], "11")
        assert cache.get(WIDGET).resource_version == "12"  # type: ignore[union-attr]

    def test_begin_resync_only_after_first_sync(self, snapshot: SnapshotFactory) -> None:
        cache = ResourceCache()
        cache.begin_resync()
        assert cache.readiness() is CacheReadiness.WARMING
        cache.replace_all([], "1")
        cache.begin_resync()
        assert cache.readiness() is CacheReadiness.RESYNCING


class TestNotifications:
    def test_notify_all_redelivers_every_key(self, snapshot: SnapshotFactory) -> None:
        cache, seen = _recording_cache()
        cache.replace_all([snapshot(name="a"), snapshot(name="b")], "2")
        seen.clear()
        assert cache.notify_all() == 2
        assert [kind for _, kind in seen] == [ChangeKind.RESYNC, ChangeKind.RESYNC]

    def test_failing_listener_does_not_block_others(self, snapshot: SnapshotFactory) -> None:
        cache = ResourceCache()
        received: list[ResourceKey] = []

        def broken(key: ResourceKey, kind: ChangeKind) -> None:
            raise RuntimeError("listener bug")

        cache.subscribe(broken)
        cache.subscribe(lambda key, kind: received.append(key))
        cache.apply(snapshot(name="widget-1"))
        assert received == [WIDGET]

    def test_list_filters_by_namespace(self, snapshot: SnapshotFactory) -> None:
        cache = ResourceCache()
        cache.apply(snapshot(name="a", namespace="x"))
        cache.apply(snapshot(name="b", namespace="y"))
        assert [s.key.name for s in cache.list("y")] == ["b"]
        assert len(cache.list()) == 2
