"""Tests for hahaha.observability.logging: filter parsing and setup."""

from __future__ import annotations

import logging
from collections.abc import Iterator

import pytest
import structlog

from hahaha.observability import logging as hlog
from hahaha.observability.logging import LogFilter, get_logger, parse_log_filter, setup_logging


@pytest.fixture(autouse=True)
def _restore_logging() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    structlog.reset_defaults()
    hlog._active_filter = LogFilter()
    root.handlers = handlers
    root.setLevel(level)
    logging.getLogger("kubernetes_asyncio").setLevel(logging.NOTSET)


class TestParseLogFilter:
    def test_bare_level_sets_default(self) -> None:
        assert parse_log_filter("debug").default == logging.DEBUG

    def test_directives(self) -> None:
        parsed = parse_log_filter("info,hahaha=debug,kubernetes_asyncio=warn")
        assert parsed.default == logging.INFO
        assert parsed.directives == {"hahaha": logging.DEBUG, "kubernetes_asyncio": logging.WARNING}

    def test_empty_parts_ignored(self) -> None:
        assert parse_log_filter(" , info ,").default == logging.INFO

    def test_unknown_level(self) -> None:
        with pytest.raises(ValueError, match="Invalid log level"):
            parse_log_filter("hahaha=loud")


class TestLogFilterLevels:
    def test_longest_prefix_wins(self) -> None:
        log_filter = LogFilter(
            default=logging.WARNING,
            directives={"hahaha": logging.INFO, "hahaha.queue": logging.DEBUG},
        )
        assert log_filter.level_for("hahaha.queue") == logging.DEBUG
        assert log_filter.level_for("hahaha.reconciler") == logging.INFO
        assert log_filter.level_for("aiohttp") == logging.WARNING

    def test_prefix_must_match_whole_segment(self) -> None:
        log_filter = LogFilter(default=logging.INFO, directives={"hahaha.queue": logging.DEBUG})
        assert log_filter.level_for("hahaha.queuex") == logging.INFO

    def test_minimum(self) -> None:
        assert parse_log_filter("warning,hahaha.leader=debug").minimum == logging.DEBUG


class TestSetupLogging:
    def test_sets_stdlib_levels_for_third_party_namespaces(self) -> None:
        setup_logging("info,kubernetes_asyncio=error,hahaha=debug")
        assert logging.getLogger("kubernetes_asyncio").level == logging.ERROR
        assert logging.getLogger().level == logging.INFO

    def test_component_below_threshold_is_dropped(self) -> None:
        setup_logging("info,hahaha.queue=error")
        with pytest.raises(structlog.DropEvent):
            hlog._filter_by_namespace(None, "warning", {"component": "queue", "event": "x"})

    def test_component_at_threshold_passes(self) -> None:
        setup_logging("info,hahaha.queue=error")
        event = {"component": "leader", "event": "x"}
        assert hlog._filter_by_namespace(None, "info", event) is event

    def test_get_logger_binds_component(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging("debug")
        get_logger("tests").info("hello_event", answer=42)
        err = capsys.readouterr().err
        assert '"hello_event"' in err
        assert '"component": "tests"' in err
