"""Tests for MCP tool dispatch and the tool handlers."""

from __future__ import annotations

import json
from typing import Any

import pytest
from mcp.server import Server
from mcp.types import CallToolRequest, ListToolsRequest

from roboclaw_mcp import tools
from roboclaw_mcp.drivers.config import MotorRuntime
from roboclaw_mcp.tools import HANDLERS, TOOLS, dispatch, register


async def call(runtime: MotorRuntime, name: str, arguments: dict[str, Any] | None = None) -> dict:
    result = await dispatch(name, arguments, runtime)
    assert len(result) == 1
    assert result[0].type == "text"
    return json.loads(result[0].text)


class TestToolCatalogue:
    def test_names_unique(self) -> None:
        names = [tool.name for tool in TOOLS]
        assert len(names) == len(set(names))

    def test_every_tool_has_a_handler(self) -> None:
        assert {tool.name for tool in TOOLS} == set(HANDLERS)

    def test_schemas_are_objects(self) -> None:
        for tool in TOOLS:
            assert tool.inputSchema["type"] == "object"
            assert set(tool.inputSchema["required"]) <= set(tool.inputSchema["properties"])

    def test_register_installs_handlers(self, sim_runtime: MotorRuntime) -> None:
        server = Server("roboclaw-mcp-test")
        register(server, sim_runtime)
        assert ListToolsRequest in server.request_handlers
        assert CallToolRequest in server.request_handlers


class TestDispatch:
    """Response envelope for success and failure."""

    @pytest.mark.asyncio
    async def test_unknown_tool(self, sim_runtime: MotorRuntime) -> None:
        data = await call(sim_runtime, "spin_forever")
        assert data == {
            "success": False,
            "error": "Unknown tool: spin_forever",
            "error_type": "UnknownTool",
        }

    @pytest.mark.asyncio
    async def test_success_envelope(self, sim_runtime: MotorRuntime) -> None:
        data = await call(sim_runtime, "get_status")
        assert data["success"] is True
        assert data["status"]["mode"] == "simulated"

    @pytest.mark.asyncio
    async def test_domain_error_reported(self, sim_runtime: MotorRuntime) -> None:
        """Verifies validation errors come back as a failed payload.

        Arrangement:
        1. read_speed with motor index 3.

        Assertion Strategy:
        success is false, the message names the valid indices and the
        error type is the library's LogicalError.
        """
        data = await call(sim_runtime, "read_speed", {"motor_index": 3})
        assert data["success"] is False
        assert data["error_type"] == "LogicalError"
        assert "1 or 2" in data["error"]

    @pytest.mark.asyncio
    async def test_unexpected_error_reported(
        self, sim_runtime: MotorRuntime, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def broken(runtime: MotorRuntime, arguments: dict[str, Any]) -> dict[str, Any]:
            raise RuntimeError("boom")

        monkeypatch.setitem(tools.HANDLERS, "get_status", broken)
        data = await call(sim_runtime, "get_status")
        assert data == {"success": False, "error": "boom", "error_type": "RuntimeError"}

    @pytest.mark.asyncio
    async def test_none_arguments(self, sim_runtime: MotorRuntime) -> None:
        data = await call(sim_runtime, "read_pwm", None)
        assert data["pwm"] == {"m1": 0, "m2": 0}

    @pytest.mark.asyncio
    async def test_uses_process_runtime_by_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ROBOCLAW_PORT", "SIMULATED")
        result = await dispatch("get_status", {})
        assert json.loads(result[0].text)["status"]["mode"] == "simulated"


class TestMotorTools:
    @pytest.mark.asyncio
    async def test_list_ports_includes_simulated(self, sim_runtime: MotorRuntime) -> None:
        data = await call(sim_runtime, "list_ports")
        assert "SIMULATED" in data["ports"]

    @pytest.mark.asyncio
    async def test_drive_pwm_then_read_back(self, sim_runtime: MotorRuntime) -> None:
        data = await call(sim_runtime, "drive_pwm", {"motorIndex": 1, "pwm": 16000})
        assert data == {"success": True, "motor_index": 1, "pwm": 16000, "backend": "simulated"}

        data = await call(sim_runtime, "read_pwm")
        assert data["pwm"] == {"m1": 16000, "m2": 0}

    @pytest.mark.asyncio
    async def test_set_sim_params(self, sim_runtime: MotorRuntime) -> None:
        data = await call(sim_runtime, "set_sim_params", {"motor": 2, "tauMs": 80, "maxVel": 120})
        assert data["motor_index"] == 2
        assert data["tau_s"] == pytest.approx(0.08)
        assert data["gain"] == 120.0
        assert sim_runtime.simulation.plant_params(2)["gain"] == 120.0

    @pytest.mark.asyncio
    async def test_velocity_pid_round_trip(self, sim_runtime: MotorRuntime) -> None:
        await call(sim_runtime, "set_velocity_pid", {"motor_index": 1, "kp": 1.0, "qpps": 500})
        data = await call(sim_runtime, "read_velocity_pid", {"motor_index": 1})
        assert data["pid"]["p"] == 65536
        assert data["pid"]["qpps"] == 500

    @pytest.mark.asyncio
    async def test_set_simulation_mode(self, hw_runtime: MotorRuntime) -> None:
        data = await call(hw_runtime, "set_simulation_mode", {"enabled": True})
        assert data["mode"] == "simulated"
        assert hw_runtime.selector.simulated

    @pytest.mark.asyncio
    async def test_read_all_status(self, sim_runtime: MotorRuntime) -> None:
        data = await call(sim_runtime, "read_all_status")
        assert data["backend"] == "simulated"
        assert data["status"]["main_battery"] == 120

    @pytest.mark.asyncio
    async def test_exchange_stats_reset(self, sim_runtime: MotorRuntime) -> None:
        sim_runtime.stats.record_exchange(18, 2.0, True)
        sim_runtime.stats.record_exchange(18, 50.0, False, "timeout")

        data = await call(sim_runtime, "read_exchange_stats", {"reset": True})
        summary = data["stats"]["commands"]["18"]
        assert summary["total"] == 2
        assert summary["error_counts"] == {"timeout": 1}

        data = await call(sim_runtime, "read_exchange_stats")
        assert data["stats"]["commands"] == {}


class TestTuningTools:
    @pytest.mark.asyncio
    async def test_run_step_response(self, sim_runtime: MotorRuntime) -> None:
        data = await call(
            sim_runtime, "run_step_response", {"motorIndex": 1, "pwmStep": 16000, "durationMs": 500}
        )
        assert data["success"] is True
        assert data["backend"] == "simulated"
        assert len(data["samples"]) == 51

    @pytest.mark.asyncio
    async def test_frequency_response_omits_samples(self, sim_runtime: MotorRuntime) -> None:
        data = await call(
            sim_runtime,
            "run_frequency_response",
            {"motor_index": 1, "start_hz": 2.0, "end_hz": 4.0, "points": 2},
        )
        assert "samples" not in data
        assert len(data["points"]) == 2

    @pytest.mark.asyncio
    async def test_estimate_step_response(self, sim_runtime: MotorRuntime) -> None:
        samples = [
            {"t_ms": i * 10.0, "vel": 0.0 if i < 5 else 50.0, "cmd": 0 if i < 5 else 100}
            for i in range(20)
        ]
        samples[5]["vel"] = 0.0
        data = await call(sim_runtime, "estimate_step_response", {"samples": samples})
        assert data["estimate"]["k"] == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_estimate_step_response_error(self, sim_runtime: MotorRuntime) -> None:
        data = await call(sim_runtime, "estimate_step_response", {"samples": []})
        assert data["success"] is False
        assert data["error_type"] == "EstimationError"

    @pytest.mark.asyncio
    async def test_autotune_velocity_step(self, sim_runtime: MotorRuntime) -> None:
        data = await call(sim_runtime, "autotune_velocity_step", {"motor_index": 1})
        assert data["method"] == "step"
        assert data["gains"]["kc"] == pytest.approx(2.0, rel=0.1)
        assert data["applied"] is False
