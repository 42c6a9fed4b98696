"""Unit tests for producer calling conventions."""

import asyncio
import threading

import pytest

from orchestrator import (
    Convention,
    Producer,
    ProducerError,
    no_args,
    with_callback,
    with_deps,
)
from orchestrator.producers import as_producer


@pytest.mark.unit
def test_no_args_producer_ignores_dependencies(run):
    producer = no_args(lambda: 5)

    assert run(producer.invoke({"ignored": 1})) == 5


@pytest.mark.unit
def test_deps_producer_receives_mapping(run):
    producer = with_deps(lambda deps: deps["a"] + deps["b"])

    assert run(producer.invoke({"a": 1, "b": 2})) == 3


@pytest.mark.unit
def test_coroutine_result_is_awaited(run):
    async def double(deps):
        await asyncio.sleep(0)
        return deps["a"] * 2

    assert run(with_deps(double).invoke({"a": 21})) == 42


@pytest.mark.unit
def test_future_result_is_awaited(run):
    async def scenario():
        future = asyncio.get_running_loop().create_future()
        future.set_result("ready")
        return await no_args(lambda: future).invoke({})

    assert run(scenario()) == "ready"


@pytest.mark.unit
def test_raising_producer_propagates(run):
    def fail(deps):
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        run(with_deps(fail).invoke({}))


@pytest.mark.unit
def test_callback_producer_result(run):
    def load(deps, done):
        done(None, deps["a"] + 1)

    assert run(with_callback(load).invoke({"a": 1})) == 2


@pytest.mark.unit
def test_callback_producer_honors_only_first_value(run):
    def load(deps, done):
        done(None, "first", "second", "third")

    assert run(with_callback(load).invoke({})) == "first"


@pytest.mark.unit
def test_callback_producer_without_value_yields_none(run):
    def load(deps, done):
        done()

    assert run(with_callback(load).invoke({})) is None


@pytest.mark.unit
@pytest.mark.edge_case
def test_callback_producer_ignores_later_calls(run):
    def load(deps, done):
        done(None, 1)
        done(None, 2)
        done(RuntimeError("late"))

    assert run(with_callback(load).invoke({})) == 1


@pytest.mark.unit
def test_callback_producer_error(run):
    def load(deps, done):
        done(KeyError("missing"))

    with pytest.raises(KeyError):
        run(with_callback(load).invoke({}))


@pytest.mark.unit
@pytest.mark.edge_case
def test_callback_producer_non_exception_error_is_wrapped(run):
    def load(deps, done):
        done("connection refused")

    with pytest.raises(ProducerError) as exc_info:
        run(with_callback(load).invoke({}))

    assert exc_info.value.error == "connection refused"


@pytest.mark.unit
def test_callback_producer_completed_from_another_thread(run):
    def load(deps, done):
        threading.Thread(target=done, args=(None, "from thread")).start()

    assert run(with_callback(load).invoke({})) == "from thread"


@pytest.mark.unit
def test_callback_producer_raising_synchronously(run):
    def load(deps, done):
        raise ValueError("bad input")

    with pytest.raises(ValueError, match="bad input"):
        run(with_callback(load).invoke({}))


@pytest.mark.unit
def test_tags_are_usable_as_decorators():
    @no_args
    def answer():
        return 42

    assert isinstance(answer, Producer)
    assert answer.convention is Convention.NO_ARGS
    # Still callable directly
    assert answer() == 42


@pytest.mark.unit
def test_retagging_unwraps_existing_producer():
    def fn(deps):
        return deps

    producer = with_callback(with_deps(fn))

    assert producer.fn is fn
    assert producer.convention is Convention.CALLBACK


@pytest.mark.unit
def test_as_producer_keeps_explicit_tag():
    tagged = with_callback(lambda deps, done: done(None, 1))

    assert as_producer(tagged, Convention.NO_ARGS) is tagged
    assert as_producer(len, Convention.DEPS) == Producer(len, Convention.DEPS)


@pytest.mark.unit
@pytest.mark.edge_case
def test_tagging_non_callable_fails():
    with pytest.raises(TypeError, match="Producer must be callable"):
        with_deps(42)
