from dataclasses import dataclass

import pytest

from grbl_relay.core import (
    AlreadyDetachedError,
    EffectManager,
    EffectManagerStopped,
    EffectRuntime,
    EffectRuntimeError,
)


@dataclass(frozen=True)
class Ping:
    value: int


@dataclass(frozen=True)
class Echo:
    value: int


@dataclass(frozen=True)
class Shout:
    value: int


@dataclass(frozen=True)
class Orphan:
    pass


class StubManager(EffectManager):
    """Manager driven directly by the tests through its channels."""

    async def run(self):
        raise EffectManagerStopped(self.name)


class RecordingApplication:
    def __init__(self, commands_for=None, init_commands=()):
        self.seen = []
        self.flags = None
        self._commands_for = commands_for or (lambda message: [])
        self._init_commands = list(init_commands)

    def init(self, flags):
        self.flags = flags
        return self, self._init_commands

    def update(self, message):
        self.seen.append(message)
        return self, self._commands_for(message)


def drain(manager):
    received = []
    while True:
        item = manager._commands.try_recv()
        if item is None:
            return received
        received.append(item)


def test_effect_manager_requires_run():
    with pytest.raises(TypeError):
        EffectManager(name="abstract")


def test_detach_only_once():
    manager = StubManager(name="once")

    manager.detach()

    assert manager.detached
    with pytest.raises(AlreadyDetachedError):
        manager.detach()


@pytest.mark.asyncio
async def test_init_publishes_commands():
    echo = StubManager(name="echo")
    runtime = EffectRuntime(RecordingApplication(init_commands=[Echo(1)]))
    runtime.register(echo, [Echo])

    await runtime.init({"flag": True})

    assert runtime.application.flags == {"flag": True}
    assert drain(echo) == [Echo(1)]


@pytest.mark.asyncio
async def test_frame_timeout_is_a_noop():
    source = StubManager(name="source")
    application = RecordingApplication()
    runtime = EffectRuntime(application, receive_timeout=0.01)
    runtime.register(source)

    try:
        assert await runtime.frame() is False
    finally:
        runtime.close()

    assert application.seen == []


@pytest.mark.asyncio
async def test_each_command_reaches_first_matching_manager_only():
    source = StubManager(name="source")
    echo_first = StubManager(name="echo-first")
    echo_second = StubManager(name="echo-second")
    shout = StubManager(name="shout")

    application = RecordingApplication(
        lambda message: [Echo(message.value), Shout(message.value), Echo(message.value + 1)]
    )
    runtime = EffectRuntime(application, receive_timeout=0.1)
    runtime.register(source)
    runtime.register(echo_first, [Echo])
    runtime.register(echo_second, [Echo, Shout])
    runtime.register(shout, [Shout])

    await source._publish(Ping(1))
    try:
        assert await runtime.frame() is True
    finally:
        runtime.close()

    assert application.seen == [Ping(1)]
    assert drain(echo_first) == [Echo(1), Echo(2)]
    assert drain(echo_second) == [Shout(1)]
    assert drain(shout) == []


@pytest.mark.asyncio
async def test_unmatched_command_is_dropped_with_warning(caplog):
    source = StubManager(name="source")
    echo = StubManager(name="echo")
    runtime = EffectRuntime(RecordingApplication(lambda message: [Orphan(), Echo(3)]))
    runtime.register(source)
    runtime.register(echo, [Echo])

    await source._publish(Ping(3))
    with caplog.at_level("WARNING"):
        try:
            await runtime.frame()
        finally:
            runtime.close()

    assert drain(echo) == [Echo(3)]
    assert "No effect manager accepts command" in caplog.text


@pytest.mark.asyncio
async def test_messages_from_several_managers_are_all_applied():
    first = StubManager(name="first")
    second = StubManager(name="second")
    application = RecordingApplication()
    runtime = EffectRuntime(application, receive_timeout=0.1)
    runtime.register(first)
    runtime.register(second)

    await first._publish(Ping(1))
    await second._publish(Ping(2))
    await first._publish(Ping(3))
    try:
        for _ in range(3):
            assert await runtime.frame() is True
        assert await runtime.frame() is False
    finally:
        runtime.close()

    assert sorted(message.value for message in application.seen) == [1, 2, 3]
    firsts = [message.value for message in application.seen if message.value != 2]
    assert firsts == [1, 3]


@pytest.mark.asyncio
async def test_closed_message_channel_is_fatal():
    source = StubManager(name="serial")
    runtime = EffectRuntime(RecordingApplication(), receive_timeout=0.1)
    runtime.register(source)
    source._messages.close()

    with pytest.raises(EffectRuntimeError) as excinfo:
        await runtime.run(flags=None)

    assert excinfo.value.manager == "serial"


@pytest.mark.asyncio
async def test_closed_command_channel_is_fatal():
    source = StubManager(name="source")
    sink = StubManager(name="sink")
    runtime = EffectRuntime(RecordingApplication(lambda message: [Echo(0)]))
    runtime.register(source)
    runtime.register(sink, [Echo])
    sink._commands.close()

    await source._publish(Ping(0))
    with pytest.raises(EffectRuntimeError) as excinfo:
        try:
            await runtime.frame()
        finally:
            runtime.close()

    assert excinfo.value.manager == "sink"


@pytest.mark.asyncio
async def test_register_after_start_is_rejected():
    runtime = EffectRuntime(RecordingApplication(), receive_timeout=0.01)
    runtime.register(StubManager(name="source"))

    try:
        await runtime.frame()
        with pytest.raises(RuntimeError):
            runtime.register(StubManager(name="late"))
    finally:
        runtime.close()
