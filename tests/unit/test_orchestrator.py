"""Unit tests for the run and stop orchestrators.

These spawn real /bin/sh scripts; the output channel is a recording fake.
"""

import os
from unittest.mock import AsyncMock, patch

import pytest

from src.config.sandbox import SandboxConfig
from src.models import (
    ProcessStartError,
    RunRequest,
    StopRequest,
    UnknownSessionError,
)
from src.services import (
    OutputChannel,
    ProcessRegistry,
    RunOrchestrator,
    StopOrchestrator,
)
from src.services.sandbox import NsjailConfig


def _run_request(session, executable):
    return RunRequest(sid=session.session_id, executable=executable)


def _outputs(events, cmd="run"):
    return [e["output"] for e in events if e["cmd"] == cmd]


class TestRunScenarios:
    """End-to-end runs against real child processes."""

    @pytest.mark.asyncio
    async def test_hi_scenario(
        self, run_orchestrator, registry, session, channel, transport, make_executable
    ):
        executable = make_executable("printf hi")

        result = await run_orchestrator.run(_run_request(session, executable))

        assert result.succ is True
        assert await run_orchestrator.join(timeout=10)
        pid = result.pid
        assert transport.sent == [
            {"cmd": "run", "output": "", "pid": pid},
            {"cmd": "run", "output": "h", "pid": pid},
            {"cmd": "run", "output": "i", "pid": pid},
            {"cmd": "run-done", "output": "", "pid": pid},
        ]
        assert registry.count() == 0

    @pytest.mark.asyncio
    async def test_output_is_escaped(
        self, run_orchestrator, session, channel, transport, make_executable
    ):
        executable = make_executable("printf 'a<b>c'")

        await run_orchestrator.run(_run_request(session, executable))
        await run_orchestrator.join(timeout=10)

        assert "".join(_outputs(transport.sent)) == "a&lt;b&gt;c"

    @pytest.mark.asyncio
    async def test_stderr_is_styled_and_run_done_is_single(
        self, run_orchestrator, session, channel, transport, make_executable
    ):
        executable = make_executable("printf 'e>' >&2\nprintf o")

        await run_orchestrator.run(_run_request(session, executable))
        await run_orchestrator.join(timeout=10)

        outputs = _outputs(transport.sent)
        assert "<span class='stderr'>e</span>" in outputs
        assert "<span class='stderr'>&gt;</span>" in outputs
        assert "o" in outputs
        assert len(_outputs(transport.sent, "run-done")) == 1

    @pytest.mark.asyncio
    async def test_runs_in_executable_directory(
        self, run_orchestrator, session, channel, transport, make_executable, tmp_path
    ):
        executable = make_executable("pwd")

        await run_orchestrator.run(_run_request(session, executable))
        await run_orchestrator.join(timeout=10)

        printed = "".join(_outputs(transport.sent)).strip()
        assert os.path.realpath(printed) == os.path.realpath(str(tmp_path))

    @pytest.mark.asyncio
    async def test_without_channel_process_is_still_reaped(
        self, run_orchestrator, registry, session, make_executable
    ):
        executable = make_executable("i=0\nwhile [ $i -lt 2000 ]; do echo line; i=$((i+1)); done")

        result = await run_orchestrator.run(_run_request(session, executable))

        assert result.succ is True
        assert await run_orchestrator.join(timeout=10)
        assert registry.count() == 0
        assert run_orchestrator.active_runs == 0

    @pytest.mark.asyncio
    async def test_concurrent_runs_in_two_sessions(
        self, run_orchestrator, registry, session_store, make_executable, make_transport
    ):
        executable = make_executable("printf done")
        first = session_store.create("one")
        second = session_store.create("two")
        t1, t2 = make_transport(), make_transport()
        session_store.attach_channel(first.session_id, OutputChannel(t1))
        session_store.attach_channel(second.session_id, OutputChannel(t2))

        r1 = await run_orchestrator.run(_run_request(first, executable))
        r2 = await run_orchestrator.run(_run_request(second, executable))
        assert r1.pid != r2.pid
        assert registry.sessions_with(r1.pid) in ([first.session_id], [])

        await run_orchestrator.join(timeout=10)

        for transport, result in ((t1, r1), (t2, r2)):
            assert "".join(_outputs(transport.sent)) == "done"
            assert transport.sent[-1] == {"cmd": "run-done", "output": "", "pid": result.pid}
        assert registry.count() == 0

    @pytest.mark.asyncio
    async def test_initial_push_failure_does_not_break_run(
        self, run_orchestrator, registry, session_store, session, make_executable, make_transport
    ):
        session_store.attach_channel(session.session_id, OutputChannel(make_transport(fail_after=0)))
        executable = make_executable("printf x")

        result = await run_orchestrator.run(_run_request(session, executable))

        assert result.succ is True
        assert await run_orchestrator.join(timeout=10)
        assert registry.count() == 0


class TestRunFailures:
    """Requests that never produce a running process."""

    @pytest.mark.asyncio
    async def test_unknown_session(self, run_orchestrator, registry, tmp_path):
        result = await run_orchestrator.run(
            RunRequest(sid="missing", executable=str(tmp_path / "prog"))
        )
        assert result.succ is False
        assert isinstance(result.error, UnknownSessionError)
        assert registry.count() == 0

    @pytest.mark.asyncio
    async def test_nonexistent_executable(
        self, run_orchestrator, registry, session, channel, transport, tmp_path
    ):
        result = await run_orchestrator.run(
            _run_request(session, str(tmp_path / "does-not-exist"))
        )

        assert result.succ is False
        assert isinstance(result.error, ProcessStartError)
        assert transport.sent == [{"cmd": "run-done", "output": ""}]
        assert registry.count() == 0
        assert run_orchestrator.active_runs == 0

    @pytest.mark.asyncio
    async def test_nonexistent_executable_without_channel(
        self, run_orchestrator, registry, session, tmp_path
    ):
        result = await run_orchestrator.run(
            _run_request(session, str(tmp_path / "does-not-exist"))
        )
        assert result.succ is False
        assert registry.count() == 0

    @pytest.mark.asyncio
    async def test_not_executable(
        self, run_orchestrator, session, channel, transport, make_executable
    ):
        executable = make_executable("echo hi", mode=0o644)

        result = await run_orchestrator.run(_run_request(session, executable))

        assert result.succ is False
        assert isinstance(result.error, ProcessStartError)
        assert transport.sent == [{"cmd": "run-done", "output": ""}]


class TestSandboxedRuns:
    """Command line construction when nsjail isolation is on."""

    @pytest.mark.asyncio
    async def test_wraps_executable_in_nsjail(
        self, registry, session_store, session, channel, transport, make_executable
    ):
        executable = make_executable("echo hi")
        orchestrator = RunOrchestrator(
            registry=registry,
            sessions=session_store,
            nsjail_config=NsjailConfig(
                SandboxConfig(sandbox_enabled=True, nsjail_binary="/opt/nsjail")
            ),
        )

        with patch(
            "src.services.orchestrator.asyncio.create_subprocess_exec",
            new=AsyncMock(side_effect=FileNotFoundError("/opt/nsjail")),
        ) as spawn:
            result = await orchestrator.run(_run_request(session, executable))

        argv = spawn.call_args.args
        assert argv[0] == "/opt/nsjail"
        assert argv[-2:] == ("--", executable)
        assert spawn.call_args.kwargs["cwd"] == os.path.dirname(executable)
        assert result.succ is False
        assert transport.sent == [{"cmd": "run-done", "output": ""}]

    @pytest.mark.asyncio
    async def test_missing_executable_is_rejected_before_spawn(
        self, registry, session_store, session, tmp_path
    ):
        orchestrator = RunOrchestrator(
            registry=registry,
            sessions=session_store,
            nsjail_config=NsjailConfig(SandboxConfig(sandbox_enabled=True)),
        )

        with patch("src.services.orchestrator.asyncio.create_subprocess_exec") as spawn:
            result = await orchestrator.run(_run_request(session, str(tmp_path / "nope")))

        spawn.assert_not_called()
        assert isinstance(result.error, ProcessStartError)


class TestStop:
    """Stop requests against live and finished runs."""

    @pytest.mark.asyncio
    async def test_stop_running_process(
        self,
        run_orchestrator,
        stop_orchestrator,
        registry,
        session,
        channel,
        transport,
        make_executable,
    ):
        executable = make_executable("printf started\nsleep 30")
        result = await run_orchestrator.run(_run_request(session, executable))

        stopped = stop_orchestrator.stop(StopRequest(sid=session.session_id, pid=result.pid))

        assert stopped.succ is True
        assert not registry.contains(session.session_id, result.pid)
        assert await run_orchestrator.join(timeout=10)
        assert transport.sent[-1]["cmd"] == "run-done"
        assert len(_outputs(transport.sent, "run-done")) == 1
        assert registry.count() == 0

    @pytest.mark.asyncio
    async def test_stop_unknown_pid_succeeds_without_mutation(
        self, run_orchestrator, stop_orchestrator, registry, session, make_executable
    ):
        executable = make_executable("sleep 30")
        result = await run_orchestrator.run(_run_request(session, executable))

        stopped = stop_orchestrator.stop(
            StopRequest(sid=session.session_id, pid=result.pid + 100000)
        )

        assert stopped.succ is True
        assert registry.pids(session.session_id) == [result.pid]

    @pytest.mark.parametrize("pid", [0, -5])
    def test_stop_non_positive_pid_succeeds(self, stop_orchestrator, registry, session, pid):
        with patch("src.services.registry.os.killpg") as killpg:
            stopped = stop_orchestrator.stop(StopRequest(sid=session.session_id, pid=pid))
        assert stopped.succ is True
        killpg.assert_not_called()

    def test_stop_unknown_session(self, stop_orchestrator):
        stopped = stop_orchestrator.stop(StopRequest(sid="missing", pid=123))
        assert stopped.succ is False
        assert isinstance(stopped.error, UnknownSessionError)

    @pytest.mark.asyncio
    async def test_stop_racing_natural_exit(
        self,
        run_orchestrator,
        stop_orchestrator,
        registry,
        session,
        channel,
        transport,
        make_executable,
    ):
        executable = make_executable("exit 0")
        result = await run_orchestrator.run(_run_request(session, executable))

        stopped = stop_orchestrator.stop(StopRequest(sid=session.session_id, pid=result.pid))

        assert stopped.succ is True
        assert await run_orchestrator.join(timeout=10)
        assert registry.count() == 0
        assert len(_outputs(transport.sent, "run-done")) == 1


class TestProcessGroups:
    """Spawning and killing agree on whether a run has its own process group."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kill_process_group", [True, False])
    async def test_spawn_follows_registry(
        self, session_store, session, make_executable, kill_process_group
    ):
        registry = ProcessRegistry(kill_process_group=kill_process_group)
        orchestrator = RunOrchestrator(registry=registry, sessions=session_store)

        with patch(
            "src.services.orchestrator.asyncio.create_subprocess_exec",
            new=AsyncMock(side_effect=FileNotFoundError("prog")),
        ) as spawn:
            await orchestrator.run(_run_request(session, make_executable("true")))

        assert spawn.call_args.kwargs["start_new_session"] is kill_process_group

    @pytest.mark.asyncio
    async def test_stop_without_process_groups_kills_child(
        self, session_store, session, make_executable, unsandboxed_config
    ):
        registry = ProcessRegistry(kill_process_group=False)
        orchestrator = RunOrchestrator(
            registry=registry, sessions=session_store, nsjail_config=unsandboxed_config
        )
        stopper = StopOrchestrator(registry=registry, sessions=session_store)
        result = await orchestrator.run(_run_request(session, make_executable("exec sleep 30")))

        try:
            stopper.stop(StopRequest(sid=session.session_id, pid=result.pid))
            assert await orchestrator.join(timeout=10)
            assert registry.count() == 0
        finally:
            await orchestrator.shutdown(timeout=5)


class TestShutdown:
    """Orchestrator shutdown winds down live runs."""

    @pytest.mark.asyncio
    async def test_shutdown_kills_running_processes(
        self, run_orchestrator, registry, session, make_executable
    ):
        executable = make_executable("sleep 30")
        await run_orchestrator.run(_run_request(session, executable))
        assert registry.count() == 1

        await run_orchestrator.shutdown(timeout=10)

        assert registry.count() == 0
        assert run_orchestrator.active_runs == 0
