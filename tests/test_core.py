from unittest.mock import MagicMock

import pytest

from schemaform import core
from schemaform.core import batch_updates, create_effect, create_signal, on_dispose, untrack


def test_effect_reruns_when_signal_changes():
    count, set_count = create_signal(0)
    seen = []
    create_effect(lambda: seen.append(count()))

    set_count(1)
    set_count(2)

    assert seen == [0, 1, 2]


def test_equal_value_does_not_notify():
    count, set_count = create_signal(5)
    seen = []
    create_effect(lambda: seen.append(count()))

    set_count(5)

    assert seen == [5]


def test_batch_updates_notifies_once_with_final_state():
    first, set_first = create_signal(1)
    second, set_second = create_signal(2)
    seen = []
    create_effect(lambda: seen.append(first() + second()))

    batch_updates(lambda: [set_first(10), set_second(20)])

    assert seen == [3, 30]


def test_untrack_reads_without_subscribing():
    tracked, set_tracked = create_signal("a")
    hidden, set_hidden = create_signal("b")
    seen = []
    create_effect(lambda: seen.append(tracked() + untrack(hidden)))

    set_hidden("c")
    assert seen == ["ab"]

    set_tracked("x")
    assert seen == ["ab", "xc"]


def test_disposed_effect_stops_running():
    count, set_count = create_signal(0)
    seen = []
    effect = create_effect(lambda: seen.append(count()))

    effect.dispose()
    set_count(1)

    assert seen == [0]


def test_on_dispose_runs_before_rerun():
    count, set_count = create_signal(0)
    cleanups = []

    def body():
        value = count()
        on_dispose(lambda: cleanups.append(value))

    effect = create_effect(body)
    set_count(1)
    assert cleanups == [0]

    effect.dispose()
    assert cleanups == [0, 1]


def test_on_dispose_outside_effect_raises():
    with pytest.raises(RuntimeError):
        on_dispose(lambda: None)


def test_effect_errors_go_to_global_handler():
    handler = MagicMock()
    previous = core._global_error_handler
    core.set_global_error_handler(handler)
    try:
        count, set_count = create_signal(0)

        def body():
            if count() > 0:
                raise ValueError("boom")

        create_effect(body)
        set_count(1)
    finally:
        core.set_global_error_handler(previous)

    handler.assert_called_once()
    error, message = handler.call_args[0]
    assert isinstance(error, ValueError)
    assert message == "Error running effect"
