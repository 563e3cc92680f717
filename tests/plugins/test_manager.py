"""Tests for the plugin manager: discovery, dispatch, broadcast and shutdown."""

import asyncio

import pytest

from buddian.config.schema import PluginsConfig
from buddian.plugins.interface import BasePlugin, CommandHandler, StructuredPlugin
from buddian.plugins.manager import FAILURE_NOTICE, ManagerState, PluginManager
from buddian.plugins.types import (
    DataIngestionConfig,
    PluginCommand,
    PluginConfig,
    PluginContext,
    PluginEvent,
    PluginMetadata,
    PluginResult,
)


class RecordingPlugin(BasePlugin):
    def __init__(
        self,
        name: str,
        commands: tuple[str, ...] = ("foo",),
        delay: float = 0.0,
        event_delay: float = 0.0,
        fail_command: bool = False,
        fail_event: bool = False,
        fail_init: bool = False,
        fail_cleanup: bool = False,
        timeout_ms: int | None = None,
    ):
        self.name = name
        self.command_names = commands
        self.delay = delay
        self.event_delay = event_delay
        self.fail_command = fail_command
        self.fail_event = fail_event
        self.fail_init = fail_init
        self.fail_cleanup = fail_cleanup
        self.timeout_ms = timeout_ms
        self.initialized = 0
        self.calls: list[tuple[str, list[str]]] = []
        self.completed: list[str] = []
        self.events: list[PluginEvent] = []
        self.cleaned = False

    def get_name(self) -> str:
        return self.name

    def get_version(self) -> str:
        return "1.0.0"

    def get_timeout_ms(self) -> int | None:
        return self.timeout_ms

    def get_commands(self) -> list[CommandHandler]:
        return [CommandHandler.create(c, self._handler(c), description=f"{c} command") for c in self.command_names]

    async def initialize(self) -> None:
        if self.fail_init:
            raise RuntimeError("init failed")
        self.initialized += 1

    async def on_event(self, event: PluginEvent) -> None:
        if self.event_delay:
            await asyncio.sleep(self.event_delay)
        if self.fail_event:
            raise RuntimeError("event failed")
        self.events.append(event)

    async def cleanup(self) -> None:
        if self.fail_cleanup:
            raise RuntimeError("cleanup failed")
        self.cleaned = True

    def _handler(self, command: str):
        async def execute(carrier, args):
            self.calls.append((command, list(args)))
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail_command:
                raise RuntimeError("command failed")
            self.completed.append(command)
            await carrier.reply(f"{self.name}:{command}")

        return execute


def _event(event_type: str = "message_received") -> PluginEvent:
    return PluginEvent(
        type=event_type,
        data={"content": "hello"},
        context=PluginContext(user_id="u1", chat_id="c1"),
    )


async def _manager(tmp_path, *plugins, **config) -> PluginManager:
    manager = PluginManager(PluginsConfig(directory=str(tmp_path / "plugins"), **config))
    for plugin in plugins:
        await manager.register_plugin(plugin)
    await manager.initialize()
    return manager


# ----------------------------------------------------------------------
# Isolation and ordering
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_broadcast_isolates_a_failing_plugin(tmp_path):
    plugins = [RecordingPlugin(f"p{i}", commands=()) for i in range(4)]
    plugins[2].fail_event = True
    manager = await _manager(tmp_path, *plugins)

    await manager.broadcast_event(_event())

    for i, plugin in enumerate(plugins):
        expected = 0 if i == 2 else 1
        assert len(plugin.events) == expected


@pytest.mark.asyncio
async def test_first_loaded_plugin_wins_duplicate_command(tmp_path, carrier):
    first = RecordingPlugin("first", commands=("x",))
    second = RecordingPlugin("second", commands=("x",))
    manager = await _manager(tmp_path, first, second)

    for _ in range(3):
        assert await manager.execute_command("x", carrier, []) is True

    assert len(first.calls) == 3
    assert second.calls == []
    assert carrier.replies == ["first:x"] * 3


@pytest.mark.asyncio
async def test_inactive_plugin_is_skipped_and_restored(tmp_path, carrier):
    plugin = RecordingPlugin("toggle", commands=("foo",))
    manager = await _manager(tmp_path, plugin)

    assert manager.set_plugin_active("toggle", False) is True
    assert await manager.execute_command("foo", carrier) is False
    await manager.broadcast_event(_event())
    assert plugin.calls == []
    assert plugin.events == []
    assert manager.get_available_commands() == []
    assert manager.has_command("foo") is False

    assert manager.set_plugin_active("toggle", True) is True
    assert await manager.execute_command("foo", carrier) is True
    await manager.broadcast_event(_event())
    assert len(plugin.calls) == 1
    assert len(plugin.events) == 1
    assert [c.command.name for c in manager.get_available_commands()] == ["foo"]
    assert plugin.initialized == 1


@pytest.mark.asyncio
async def test_set_plugin_active_unknown_plugin(tmp_path):
    manager = await _manager(tmp_path, RecordingPlugin("known"))
    assert manager.set_plugin_active("missing", False) is False


# ----------------------------------------------------------------------
# Timeouts and stats
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_handler_under_timeout_succeeds(tmp_path, carrier):
    plugin = RecordingPlugin("fast", delay=0.02)
    manager = await _manager(tmp_path, plugin, timeout_ms=500)

    assert await manager.execute_command("foo", carrier) is True

    stats = manager.get_plugin_stats()[0].stats
    assert stats.executions == 1
    assert stats.errors == 0
    assert stats.total_execution_time_ms > 0


@pytest.mark.asyncio
async def test_handler_over_timeout_fails_but_keeps_running(tmp_path, carrier):
    plugin = RecordingPlugin("slow", delay=0.3)
    manager = await _manager(tmp_path, plugin, timeout_ms=50)

    assert await manager.execute_command("foo", carrier) is False

    stats = manager.get_plugin_stats()[0].stats
    assert stats.executions == 0
    assert stats.errors == 1
    assert stats.total_execution_time_ms > 0
    assert carrier.replies == [FAILURE_NOTICE]
    assert plugin.completed == []

    # The timed-out handler is not cancelled
    await asyncio.sleep(0.4)
    assert plugin.completed == ["foo"]
    assert carrier.replies == [FAILURE_NOTICE, "slow:foo"]


@pytest.mark.asyncio
async def test_plugin_timeout_override(tmp_path, carrier):
    plugin = RecordingPlugin("strict", delay=0.2, timeout_ms=30)
    manager = await _manager(tmp_path, plugin, timeout_ms=5000)

    assert await manager.execute_command("foo", carrier) is False
    assert manager.get_plugin("strict").timeout_ms == 30
    await asyncio.sleep(0.25)


@pytest.mark.asyncio
async def test_stats_accumulate_across_successes_and_failures(tmp_path, carrier):
    plugin = RecordingPlugin("counted", delay=0.005)
    manager = await _manager(tmp_path, plugin)

    totals = []
    for _ in range(3):
        assert await manager.execute_command("foo", carrier) is True
        totals.append(manager.get_plugin_stats()[0].stats.total_execution_time_ms)
    plugin.fail_command = True
    for _ in range(2):
        assert await manager.execute_command("foo", carrier) is False
        totals.append(manager.get_plugin_stats()[0].stats.total_execution_time_ms)

    stats = manager.get_plugin_stats()[0].stats
    assert stats.executions == 3
    assert stats.errors == 2
    assert totals == sorted(totals)
    assert len(set(totals)) == len(totals)
    assert stats.average_execution_time_ms == pytest.approx(stats.total_execution_time_ms / 5)


@pytest.mark.asyncio
async def test_failing_handler_sends_generic_notice(tmp_path, carrier):
    plugin = RecordingPlugin("broken", fail_command=True)
    manager = await _manager(tmp_path, plugin)

    assert await manager.execute_command("foo", carrier, ["a"]) is False
    assert carrier.replies == [FAILURE_NOTICE]
    assert manager.get_plugin("broken").last_used is None


@pytest.mark.asyncio
async def test_stats_snapshot_is_a_copy(tmp_path, carrier):
    manager = await _manager(tmp_path, RecordingPlugin("snap"))
    await manager.execute_command("foo", carrier)

    snapshot = manager.get_plugin_stats()[0]
    snapshot.stats.executions = 100

    assert manager.get_plugin_stats()[0].stats.executions == 1
    assert manager.get_plugin_stats()[0].last_used is not None


# ----------------------------------------------------------------------
# Lifecycle
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_empty_directory_falls_back_to_demo_plugin(tmp_path, carrier):
    (tmp_path / "plugins").mkdir()
    manager = PluginManager(PluginsConfig(directory=str(tmp_path / "plugins")))
    await manager.initialize()

    stats = manager.get_plugin_stats()
    assert [s.name for s in stats] == ["Demo Plugin"]

    assert await manager.execute_command("demo", carrier, ["hello"]) is True
    assert carrier.replies == ["🔌 Demo Plugin: hello"]
    assert manager.get_plugin_stats()[0].stats.executions == 1


@pytest.mark.asyncio
async def test_missing_directory_falls_back_to_demo_plugin(tmp_path, carrier):
    manager = PluginManager(PluginsConfig(directory="missing"), cwd=tmp_path)
    await manager.initialize()

    assert manager.plugin_count == 1
    assert await manager.execute_command("demo", carrier) is True
    assert carrier.replies == ["🔌 Demo Plugin: Hello from demo plugin!"]


@pytest.mark.asyncio
async def test_broadcast_reaches_both_plugins(tmp_path):
    a = RecordingPlugin("A", commands=("foo",), event_delay=0.05)
    b = RecordingPlugin("B", commands=("bar",))
    manager = await _manager(tmp_path, a, b)

    await manager.broadcast_event(_event("message_received"))

    assert len(a.events) == 1
    assert len(b.events) == 1


@pytest.mark.asyncio
async def test_disabled_manager_does_nothing(tmp_path, carrier):
    plugin = RecordingPlugin("never")
    manager = await _manager(tmp_path, plugin, enabled=False)

    assert manager.state == ManagerState.DISABLED
    assert manager.is_ready is False
    assert manager.plugin_count == 0
    assert await manager.execute_command("foo", carrier) is False
    await manager.broadcast_event(_event())
    assert plugin.initialized == 0
    assert plugin.events == []


@pytest.mark.asyncio
async def test_initialize_is_idempotent(tmp_path):
    plugin = RecordingPlugin("once")
    manager = await _manager(tmp_path, plugin)
    await manager.initialize()

    assert manager.state == ManagerState.READY
    assert plugin.initialized == 1
    assert manager.plugin_count == 1


@pytest.mark.asyncio
async def test_execute_before_initialize_returns_false(carrier):
    manager = PluginManager()
    assert manager.state == ManagerState.UNINITIALIZED
    assert await manager.execute_command("demo", carrier) is False


@pytest.mark.asyncio
async def test_unknown_command_is_not_an_error(tmp_path, carrier):
    manager = await _manager(tmp_path, RecordingPlugin("one"))
    assert await manager.execute_command("nope", carrier) is False
    assert carrier.replies == []


@pytest.mark.asyncio
async def test_initialize_failure_skips_only_that_plugin(tmp_path):
    bad = RecordingPlugin("bad", fail_init=True)
    good = RecordingPlugin("good")
    manager = await _manager(tmp_path, bad, good)

    assert manager.state == ManagerState.READY
    assert [s.name for s in manager.get_plugin_stats()] == ["good"]


@pytest.mark.asyncio
async def test_register_plugin_after_ready_is_immediate(tmp_path, carrier):
    manager = await _manager(tmp_path, RecordingPlugin("first"))

    assert await manager.register_plugin(RecordingPlugin("late", commands=("late",))) is True
    assert manager.has_command("late")
    assert await manager.execute_command("late", carrier) is True

    assert await manager.register_plugin(RecordingPlugin("worse", fail_init=True)) is False
    assert manager.get_plugin("worse") is None


@pytest.mark.asyncio
async def test_duplicate_name_replaces_previous_instance(tmp_path, carrier):
    old = RecordingPlugin("same", commands=("old",))
    new = RecordingPlugin("same", commands=("new",))
    manager = await _manager(tmp_path, old, new)

    assert manager.plugin_count == 1
    assert manager.get_plugin("same").plugin is new
    assert manager.has_command("old") is False
    assert old.cleaned is True
    assert new.cleaned is False

    await manager.shutdown()
    assert new.cleaned is True


@pytest.mark.asyncio
async def test_registering_the_same_object_twice_initializes_it_once(tmp_path):
    plugin = RecordingPlugin("once")
    manager = await _manager(tmp_path, plugin, plugin)

    assert plugin.initialized == 1
    assert await manager.register_plugin(plugin) is True
    assert plugin.initialized == 1
    assert plugin.cleaned is False
    assert manager.plugin_count == 1


@pytest.mark.asyncio
async def test_sync_hooks_and_dict_commands_are_accepted(tmp_path, carrier):
    received = []

    async def ping(c, args):
        await c.reply("pong")

    class PlainPlugin:
        def get_name(self):
            return "plain"

        def get_version(self):
            return "0.1"

        def get_commands(self):
            return [{"name": "ping2", "description": "Ping", "execute": ping}]

        def initialize(self):
            return None

        def on_event(self, event):
            received.append(event.type)

    manager = await _manager(tmp_path, PlainPlugin())

    assert await manager.execute_command("ping2", carrier) is True
    assert carrier.replies == ["pong"]
    await manager.broadcast_event(_event("user_joined"))
    assert received == ["user_joined"]


@pytest.mark.asyncio
async def test_shutdown_runs_every_cleanup_and_clears_registry(tmp_path, carrier):
    failing = RecordingPlugin("failing", fail_cleanup=True)
    healthy = RecordingPlugin("healthy", commands=("bar",))
    manager = await _manager(tmp_path, failing, healthy)

    await manager.shutdown()

    assert healthy.cleaned is True
    assert manager.state == ManagerState.SHUTDOWN
    assert manager.get_plugin_stats() == []
    assert await manager.execute_command("bar", carrier) is False


@pytest.mark.asyncio
async def test_initialize_after_shutdown_reloads(tmp_path, carrier):
    plugin = RecordingPlugin("again")
    manager = await _manager(tmp_path, plugin)
    await manager.shutdown()

    await manager.initialize()

    assert manager.state == ManagerState.READY
    assert plugin.initialized == 2
    assert await manager.execute_command("foo", carrier) is True


@pytest.mark.asyncio
async def test_discovers_plugins_from_directory(tmp_path, carrier, write_plugin):
    root = tmp_path / "plugins"
    write_plugin(root, "broken", "this is not python (\n")
    write_plugin(
        root,
        "echo",
        """
        from buddian.plugins import BasePlugin, CommandHandler


        class EchoPlugin(BasePlugin):
            def get_name(self):
                return "Echo"

            def get_version(self):
                return "2.0.0"

            def get_commands(self):
                return [CommandHandler.create("echo", self.echo)]

            async def initialize(self):
                pass

            async def on_event(self, event):
                pass

            async def echo(self, carrier, args):
                await carrier.reply(" ".join(args))


        plugin = EchoPlugin()
        """,
    )
    manager = PluginManager(PluginsConfig(directory=str(root)))
    await manager.initialize()

    assert [s.name for s in manager.get_plugin_stats()] == ["Echo"]
    assert manager.get_plugin("Echo").source == str(root / "echo")
    assert await manager.execute_command("echo", carrier, ["hi", "there"]) is True
    assert carrier.replies == ["hi there"]


# ----------------------------------------------------------------------
# Health and ingestion
# ----------------------------------------------------------------------


class FeedPlugin(StructuredPlugin):
    metadata = PluginMetadata(id="feed", name="Feed", version="0.2.0")
    config = PluginConfig(commands=[PluginCommand(name="feed", usage="/feed")])

    async def execute_command(self, command, parameters, context):
        return PluginResult.ok("fed")

    async def ingest_data(self, config: DataIngestionConfig) -> PluginResult:
        return PluginResult.ok(f"ingested {config.source}", data=[1, 2])


class UnhealthyPlugin(RecordingPlugin):
    async def health_check(self) -> bool:
        raise RuntimeError("down")


class HangingPlugin(RecordingPlugin):
    async def health_check(self) -> bool:
        await asyncio.sleep(0.2)
        return True


@pytest.mark.asyncio
async def test_health_check_reports_each_plugin(tmp_path):
    manager = await _manager(
        tmp_path,
        RecordingPlugin("ok"),
        UnhealthyPlugin("sick"),
        HangingPlugin("hung"),
        timeout_ms=50,
    )

    assert await manager.health_check() == {"ok": True, "sick": False, "hung": False}
    await asyncio.sleep(0.25)


@pytest.mark.asyncio
async def test_ingest_data_delegates_to_plugin(tmp_path):
    manager = await _manager(tmp_path, FeedPlugin(), RecordingPlugin("plain"))

    result = await manager.ingest_data("Feed", {"source": "https://example.com", "type": "api"})
    assert result.success is True
    assert result.message == "ingested https://example.com"
    assert result.data == [1, 2]

    unsupported = await manager.ingest_data("plain", {"source": "x", "type": "api"})
    assert unsupported.success is False
    assert "does not support" in unsupported.error

    missing = await manager.ingest_data("ghost", {"source": "x", "type": "api"})
    assert missing.success is False

    invalid = await manager.ingest_data("Feed", {"source": "x", "type": "carrier-pigeon"})
    assert invalid.success is False
