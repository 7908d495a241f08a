"""Tests for the status vocabulary and transition table."""

import pytest

from hostpanel.status import (
    DISABLED,
    OK,
    PENDING_STATUSES,
    TODELETE,
    TODISABLE,
    UNKNOWN_ERROR,
    Outcome,
    Result,
    StatusKind,
    Verb,
    classify,
    is_error,
    resolve_outcome,
    verb_for,
)


@pytest.mark.parametrize(
    ("value", "kind"),
    [
        ("toadd", StatusKind.PENDING),
        ("tochangepwd", StatusKind.PENDING),
        ("ok", StatusKind.TERMINAL),
        ("disabled", StatusKind.TERMINAL),
        ("httpd: permission denied", StatusKind.ERROR),
        ("", StatusKind.ERROR),
        (None, StatusKind.ERROR),
    ],
)
def test_classify(value, kind):
    assert classify(value) is kind


def test_is_error_only_for_free_text():
    assert is_error("Cannot remove domain 3")
    assert not is_error("ok")
    assert not is_error("todelete")


def test_verb_for_maps_every_pending_keyword():
    assert verb_for("toadd") is Verb.ADD
    assert verb_for("tochange") is Verb.ADD
    assert verb_for("toenable") is Verb.ADD
    assert verb_for("tochangepwd") is Verb.ADD
    assert verb_for("todisable") is Verb.DISABLE
    assert verb_for("torestore") is Verb.RESTORE
    assert verb_for("todelete") is Verb.DELETE


def test_verb_for_rejects_stable_status():
    with pytest.raises(ValueError, match="not a pending status"):
        verb_for("ok")


@pytest.mark.parametrize("status", sorted(PENDING_STATUSES))
def test_round_trip_success_reaches_documented_terminal(status):
    outcome = resolve_outcome(status, Result.ok())
    if status == TODELETE:
        assert outcome.removed
    elif status == TODISABLE:
        assert outcome == Outcome(StatusKind.TERMINAL, DISABLED)
    else:
        assert outcome == Outcome(StatusKind.TERMINAL, OK)


@pytest.mark.parametrize("status", sorted(PENDING_STATUSES))
@pytest.mark.parametrize("message", ["vhost write failed", "", "   ", None])
def test_round_trip_failure_never_blank(status, message):
    outcome = resolve_outcome(status, Result.fail(message))
    assert outcome.kind is StatusKind.ERROR
    assert outcome.value
    assert outcome.value.strip()
    if message and message.strip():
        assert outcome.value == message
    else:
        assert outcome.value == UNKNOWN_ERROR


def test_result_then_short_circuits_on_failure():
    calls = []

    def step():
        calls.append(1)
        return Result.ok()

    assert Result.ok().then(step)
    failed = Result.fail("first").then(step)
    assert not failed
    assert failed.message == "first"
    assert calls == [1]


def test_resolve_outcome_rejects_unknown_status():
    with pytest.raises(ValueError):
        resolve_outcome("ok", Result.ok())
