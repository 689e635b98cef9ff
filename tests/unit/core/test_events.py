"""Unit tests for the synchronous event emitter."""

from __future__ import annotations

import logging

from easyauth.core.events import EventEmitter


def test_listeners_run_in_registration_order() -> None:
    emitter = EventEmitter()
    calls: list[str] = []
    emitter.on("login_completed", lambda evt: calls.append(f"a:{evt}"))
    emitter.on("login_completed", lambda evt: calls.append(f"b:{evt}"))
    emitter.emit("login_completed", 1)
    assert calls == ["a:1", "b:1"]


def test_failing_listener_does_not_stop_others(caplog) -> None:
    emitter = EventEmitter()
    calls: list[int] = []

    def boom(_evt):
        raise RuntimeError("listener failure")

    emitter.on("login_failed", boom)
    emitter.on("login_failed", calls.append)
    with caplog.at_level(logging.ERROR, logger="easyauth.core.events"):
        emitter.emit("login_failed", 7)
    assert calls == [7]
    assert "listener failure" in caplog.text


def test_off_removes_by_identity_only() -> None:
    emitter = EventEmitter()
    calls: list[str] = []

    def handler(_evt):
        calls.append("handler")

    def lookalike(_evt):
        calls.append("handler")

    emitter.on("session_refreshed", handler)
    emitter.on("session_refreshed", lookalike)
    emitter.off("session_refreshed", handler)
    emitter.emit("session_refreshed", None)
    assert calls == ["handler"]
    assert emitter.listener_count("session_refreshed") == 1


def test_same_function_registered_once() -> None:
    emitter = EventEmitter()
    seen: list[int] = []

    def handler(evt):
        seen.append(evt)

    emitter.on("x", handler)
    emitter.on("x", handler)
    emitter.emit("x", 1)
    assert seen == [1]


def test_once_fires_a_single_time() -> None:
    emitter = EventEmitter()
    seen: list[int] = []
    wrapper = emitter.once("x", seen.append)
    emitter.emit("x", 1)
    emitter.emit("x", 2)
    assert seen == [1]
    assert emitter.listener_count("x") == 0

    wrapper = emitter.once("x", seen.append)
    emitter.off("x", wrapper)
    emitter.emit("x", 3)
    assert seen == [1]


def test_listener_added_during_emit_runs_next_time() -> None:
    emitter = EventEmitter()
    seen: list[str] = []

    def late(_evt):
        seen.append("late")

    def first(_evt):
        seen.append("first")
        emitter.on("x", late)

    emitter.on("x", first)
    emitter.emit("x", None)
    assert seen == ["first"]
    emitter.emit("x", None)
    assert seen == ["first", "first", "late"]


def test_remove_all_and_event_names() -> None:
    emitter = EventEmitter()
    emitter.on("a", print)
    emitter.on("b", print)
    assert sorted(emitter.event_names()) == ["a", "b"]
    emitter.remove_all_listeners("a")
    assert emitter.event_names() == ["b"]
    emitter.remove_all_listeners()
    assert emitter.event_names() == []
