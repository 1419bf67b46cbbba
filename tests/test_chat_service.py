"""
Tests for chat orchestration (gating, commit semantics, streaming, ordering, expiry).
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from conftest import TEST_MODEL, FakeClock, StubProvider, make_orchestrator, make_relay_config

from chatrelay.core import (
    ForbiddenError,
    InternalError,
    InvalidParameterError,
    RateLimitedError,
    TooLongError,
    UnsupportedModelError,
    UpstreamError,
    UpstreamUnavailableError,
)
from chatrelay.services import ChunkEvent, Role, TurnRequest


def turn(
    message: str = "hi",
    *,
    conversation_id: str = "conv-1",
    identity: str = "alice",
    model: str = TEST_MODEL,
    temperature: float = 0.7,
    system_prompt: str = "",
) -> TurnRequest:
    return TurnRequest(
        conversation_id=conversation_id,
        owner_identity=identity,
        message_text=message,
        model_name=model,
        temperature=temperature,
        system_prompt=system_prompt,
    )


async def collect(stream) -> list[ChunkEvent]:
    return [event async for event in stream]


# Buffered path


@pytest.mark.asyncio
async def test_buffered_exchanges_append_two_turns_each(stub_provider: StubProvider) -> None:
    orchestrator = make_orchestrator(stub_provider)

    for i in range(3):
        result = await orchestrator.send_turn(turn(f"m{i}"))
        assert result.content == f"echo:m{i}"
        assert result.model == TEST_MODEL
        assert result.message_id.startswith("msg_")

    turns = orchestrator.store.get("conv-1").turns
    assert len(turns) == 6
    assert [t.role for t in turns] == [Role.USER, Role.ASSISTANT] * 3
    assert [t.content for t in turns[:2]] == ["m0", "echo:m0"]
    assert orchestrator.metrics.counter("turns_committed_total") == 6


@pytest.mark.asyncio
async def test_context_has_system_prompt_history_and_new_message(
    stub_provider: StubProvider,
) -> None:
    orchestrator = make_orchestrator(stub_provider)

    await orchestrator.send_turn(turn("first", system_prompt="be brief"))
    await orchestrator.send_turn(turn("second", system_prompt="be brief"))

    sent = [(m.role, m.content) for m in stub_provider.requests[1].messages]
    assert sent == [
        ("system", "be brief"),
        ("user", "first"),
        ("assistant", "echo:first"),
        ("user", "second"),
    ]
    assert stub_provider.requests[1].temperature == 0.7
    # The system prompt is context only, never stored.
    assert len(orchestrator.store.get("conv-1").turns) == 4


@pytest.mark.asyncio
async def test_first_owner_wins(stub_provider: StubProvider) -> None:
    orchestrator = make_orchestrator(stub_provider)
    await orchestrator.send_turn(turn(identity="alice"))

    with pytest.raises(ForbiddenError):
        await orchestrator.send_turn(turn(identity="bob"))

    conversation = orchestrator.store.get("conv-1")
    assert conversation.owner_identity == "alice"
    assert len(conversation.turns) == 2
    assert stub_provider.calls == 1
    # Ownership is checked before admission, so bob was never charged.
    assert orchestrator.limiter.tracked_identities() == 1


@pytest.mark.asyncio
async def test_out_of_range_temperature_changes_nothing(stub_provider: StubProvider) -> None:
    orchestrator = make_orchestrator(stub_provider)

    with pytest.raises(InvalidParameterError):
        await orchestrator.send_turn(turn(temperature=1.5))
    with pytest.raises(InvalidParameterError):
        await orchestrator.stream_turn(turn(temperature=-0.1))

    assert orchestrator.store.count() == 0
    assert stub_provider.calls == 0


@pytest.mark.asyncio
async def test_temperature_bounds_are_inclusive(stub_provider: StubProvider) -> None:
    orchestrator = make_orchestrator(stub_provider)

    await orchestrator.send_turn(turn(temperature=0))
    await orchestrator.send_turn(turn(temperature=1))

    assert stub_provider.calls == 2


@pytest.mark.asyncio
async def test_unsupported_model_is_rejected_after_charging_a_slot(
    stub_provider: StubProvider,
) -> None:
    orchestrator = make_orchestrator(stub_provider, config=make_relay_config(cap=1))

    with pytest.raises(UnsupportedModelError) as exc_info:
        await orchestrator.send_turn(turn(model="gpt-unknown"))
    assert exc_info.value.details == {"model": "gpt-unknown"}

    with pytest.raises(RateLimitedError):
        await orchestrator.send_turn(turn())

    assert orchestrator.store.count() == 0
    assert stub_provider.calls == 0


@pytest.mark.asyncio
async def test_empty_message_is_invalid(stub_provider: StubProvider) -> None:
    orchestrator = make_orchestrator(stub_provider)

    with pytest.raises(InvalidParameterError):
        await orchestrator.send_turn(turn("   "))

    assert stub_provider.calls == 0


@pytest.mark.asyncio
async def test_length_limits(stub_provider: StubProvider) -> None:
    config = make_relay_config(max_message_length=5, max_system_prompt_length=3)
    orchestrator = make_orchestrator(stub_provider, config=config)

    with pytest.raises(TooLongError) as message_exc:
        await orchestrator.send_turn(turn("123456"))
    with pytest.raises(TooLongError) as prompt_exc:
        await orchestrator.send_turn(turn("12345", system_prompt="abcd"))

    assert message_exc.value.details["field"] == "message"
    assert prompt_exc.value.details["field"] == "systemPrompt"
    assert orchestrator.store.count() == 0

    await orchestrator.send_turn(turn("12345", system_prompt="abc"))
    assert stub_provider.calls == 1


@pytest.mark.asyncio
async def test_rate_limit_applies_per_identity(stub_provider: StubProvider) -> None:
    orchestrator = make_orchestrator(stub_provider, config=make_relay_config(cap=2))

    await orchestrator.send_turn(turn("a"))
    await orchestrator.send_turn(turn("b"))
    with pytest.raises(RateLimitedError):
        await orchestrator.send_turn(turn("c"))
    await orchestrator.send_turn(turn("d", identity="bob", conversation_id="conv-2"))

    assert len(orchestrator.store.get("conv-1").turns) == 4
    assert orchestrator.metrics.counter("rate_limit_rejections_total") == 1


@pytest.mark.asyncio
async def test_upstream_failure_commits_nothing() -> None:
    provider = StubProvider(error=UpstreamUnavailableError())
    orchestrator = make_orchestrator(provider)

    with pytest.raises(UpstreamUnavailableError):
        await orchestrator.send_turn(turn())

    assert orchestrator.store.get("conv-1").turns == ()
    assert orchestrator.metrics.counter("upstream_errors_total") == 1


@pytest.mark.asyncio
async def test_conversation_deleted_mid_exchange_is_internal_error() -> None:
    provider = StubProvider(delays=[0.05])
    orchestrator = make_orchestrator(provider)

    task = asyncio.create_task(orchestrator.send_turn(turn()))
    await asyncio.sleep(0.01)
    assert orchestrator.delete_conversation("conv-1") is True

    with pytest.raises(InternalError):
        await task


# Ordering


@pytest.mark.asyncio
async def test_concurrent_sends_commit_in_call_start_order() -> None:
    # The first call is slower; it must still commit first.
    provider = StubProvider(delays=[0.05, 0.0])
    orchestrator = make_orchestrator(provider)

    first = asyncio.create_task(orchestrator.send_turn(turn("first")))
    second = asyncio.create_task(orchestrator.send_turn(turn("second")))
    await asyncio.gather(first, second)

    contents = [t.content for t in orchestrator.store.get("conv-1").turns]
    assert contents == ["first", "echo:first", "second", "echo:second"]
    assert [m.content for m in provider.requests[1].messages] == [
        "first",
        "echo:first",
        "second",
    ]


@pytest.mark.asyncio
async def test_different_conversations_do_not_wait_for_each_other() -> None:
    provider = StubProvider(delays=[0.2, 0.0])
    orchestrator = make_orchestrator(provider)

    slow = asyncio.create_task(orchestrator.send_turn(turn("slow", conversation_id="a")))
    await asyncio.sleep(0)
    await asyncio.wait_for(orchestrator.send_turn(turn("fast", conversation_id="b")), 0.1)

    assert not slow.done()
    await slow


# Incremental path


@pytest.mark.asyncio
async def test_stream_emits_deltas_then_completion_and_commits() -> None:
    provider = StubProvider(chunks=["He", "", "llo"])
    orchestrator = make_orchestrator(provider)

    events = await collect(await orchestrator.stream_turn(turn("greet me")))

    assert [e.delta for e in events if not e.final] == ["He", "llo"]
    assert events[-1].final and events[-1].failure is None
    assert events[-1].message_id.startswith("msg_")
    assert sum(1 for e in events if e.final) == 1

    turns = orchestrator.store.get("conv-1").turns
    assert [(t.role, t.content) for t in turns] == [
        (Role.USER, "greet me"),
        (Role.ASSISTANT, "Hello"),
    ]


@pytest.mark.asyncio
async def test_stream_failure_midway_emits_error_and_commits_nothing() -> None:
    provider = StubProvider(chunks=["He", UpstreamError("Upstream provider error")])
    orchestrator = make_orchestrator(provider)

    events = await collect(await orchestrator.stream_turn(turn()))

    assert events[0] == ChunkEvent.of_delta("He")
    assert events[-1] == ChunkEvent.failed("Upstream provider error")
    assert len(events) == 2
    assert orchestrator.store.get("conv-1").turns == ()
    assert orchestrator.metrics.counter("upstream_errors_total") == 1


@pytest.mark.asyncio
async def test_stream_unexpected_error_is_reported_generically() -> None:
    provider = StubProvider(chunks=["He", RuntimeError("boom")])
    orchestrator = make_orchestrator(provider)

    events = await collect(await orchestrator.stream_turn(turn()))

    assert events[-1].failure == "An unexpected error occurred"
    assert orchestrator.store.get("conv-1").turns == ()


@pytest.mark.asyncio
async def test_stream_gate_errors_are_raised_before_streaming(
    stub_provider: StubProvider,
) -> None:
    orchestrator = make_orchestrator(stub_provider)
    await orchestrator.send_turn(turn(identity="alice"))

    with pytest.raises(ForbiddenError):
        await orchestrator.stream_turn(turn(identity="bob"))
    with pytest.raises(UnsupportedModelError):
        await orchestrator.stream_turn(turn(model="nope"))

    assert stub_provider.calls == 1


@pytest.mark.asyncio
async def test_disconnected_consumer_does_not_stop_commit() -> None:
    provider = StubProvider(chunks=["a", "b", "c"], delays=[0.01])
    orchestrator = make_orchestrator(provider, complete_on_disconnect=True)

    stream = await orchestrator.stream_turn(turn())
    first = await stream.receive()
    stream.close()
    await stream.wait_closed()

    assert first == ChunkEvent.of_delta("a")
    assert orchestrator.store.get("conv-1").turns[-1].content == "abc"


@pytest.mark.asyncio
async def test_disconnect_cancels_exchange_when_configured() -> None:
    provider = StubProvider(chunks=["a", "b", "c"], delays=[0.05])
    orchestrator = make_orchestrator(provider, complete_on_disconnect=False)

    stream = await orchestrator.stream_turn(turn())
    await stream.receive()
    stream.close()
    await stream.wait_closed()

    assert orchestrator.store.get("conv-1").turns == ()
    assert len(orchestrator.manager) == 0


@pytest.mark.asyncio
async def test_slow_consumer_sees_every_event_in_order() -> None:
    chunks = [str(i) for i in range(20)]
    provider = StubProvider(chunks=chunks)
    orchestrator = make_orchestrator(provider, queue_size=2)

    stream = await orchestrator.stream_turn(turn())
    deltas = []
    async for event in stream:
        await asyncio.sleep(0)
        if not event.final:
            deltas.append(event.delta)

    assert deltas == chunks


@pytest.mark.asyncio
async def test_stream_turn_to_drives_callback() -> None:
    provider = StubProvider(chunks=["He", "llo"])
    orchestrator = make_orchestrator(provider)
    received: list[ChunkEvent] = []

    async def on_chunk(event: ChunkEvent) -> None:
        received.append(event)

    await orchestrator.stream_turn_to(turn(), on_chunk)

    assert [e.delta for e in received[:-1]] == ["He", "llo"]
    assert received[-1].final


@pytest.mark.asyncio
async def test_aclose_cancels_active_streams() -> None:
    provider = StubProvider(chunks=["a", "b"], delays=[1.0])
    orchestrator = make_orchestrator(provider)

    stream = await orchestrator.stream_turn(turn())
    assert len(orchestrator.manager) == 1
    await asyncio.sleep(0.01)
    await orchestrator.aclose()
    await stream.wait_closed()
    events = await asyncio.wait_for(collect(stream), timeout=0.5)

    assert stream.task.cancelled()
    assert len(orchestrator.manager) == 0
    assert events == [ChunkEvent.failed("Stream cancelled")]
    assert orchestrator.store.get("conv-1").turns == ()


# Expiry and introspection


@pytest.mark.asyncio
async def test_force_expire_sweep_removes_idle_conversations(stub_provider: StubProvider) -> None:
    clock = FakeClock()
    orchestrator = make_orchestrator(stub_provider, clock=clock)
    await orchestrator.send_turn(turn(conversation_id="old"))
    clock.advance(3600)
    await orchestrator.send_turn(turn(conversation_id="recent"))

    clock.advance(timedelta(hours=24).total_seconds() - 1800)
    assert orchestrator.force_expire_sweep() == 1

    assert orchestrator.conversation_count() == 1
    assert orchestrator.store.exists("recent")
    assert orchestrator.metrics.counter("conversations_expired_total") == 1


@pytest.mark.asyncio
async def test_sweep_skips_conversation_with_exchange_in_flight() -> None:
    clock = FakeClock()
    provider = StubProvider(delays=[0.0, 0.05])
    orchestrator = make_orchestrator(provider, clock=clock)
    await orchestrator.send_turn(turn("one"))
    clock.advance(timedelta(hours=25).total_seconds())

    pending = asyncio.create_task(orchestrator.send_turn(turn("two")))
    await asyncio.sleep(0.01)
    assert orchestrator.force_expire_sweep() == 0
    await pending

    assert len(orchestrator.store.get("conv-1").turns) == 4


def test_introspection(stub_provider: StubProvider) -> None:
    orchestrator = make_orchestrator(
        stub_provider, config=make_relay_config(models=(TEST_MODEL, "other"))
    )

    assert orchestrator.list_supported_models() == {TEST_MODEL, "other"}
    assert orchestrator.conversation_count() == 0
    assert orchestrator.delete_conversation("missing") is False
