"""Tests for IMC gain synthesis and the autotune pipelines."""

from __future__ import annotations

import pytest

from roboclaw_mcp.analysis.autotune import (
    ImcGains,
    autotune_velocity_frf,
    autotune_velocity_step,
    synthesize_imc_gains,
)
from roboclaw_mcp.devices import MotorDriver
from roboclaw_mcp.drivers.config import MotorRuntime
from roboclaw_mcp.drivers.motors import VelocityPid, from_fixed, to_fixed
from roboclaw_mcp.errors import EstimationError, LogicalError, TransportError
from tests.helpers import MockSerialPort


class TestSynthesizeImcGains:
    def test_reference_plant(self) -> None:
        """Verifies the IMC formulas on a plant with K_eff = 1.

        Arrangement:
        1. K = 100/32767 counts/s per PWM count with QPPS 100, so the
           normalised gain is exactly 1.
        2. tau 0.1 s and lambda scale 0.5 give lambda 0.05 s.

        Assertion Strategy:
        Kc = tau / (K_eff * lambda) = 2.0, Ti = tau, Kd = 0, and the raw
        fields are the 16.16 encodings of Kc and Kc / Ti.
        """
        gains = synthesize_imc_gains(100 / 32767, 0.1, 100, 0.5)

        assert isinstance(gains, ImcGains)
        assert gains.k_eff == pytest.approx(1.0)
        assert gains.lambda_s == pytest.approx(0.05)
        assert gains.kc == pytest.approx(2.0)
        assert gains.ti == pytest.approx(0.1)
        assert gains.kd == 0.0
        assert gains.p == to_fixed(gains.kc)
        assert from_fixed(gains.i) == pytest.approx(20.0, abs=1e-4)
        assert gains.d == 0

    def test_slower_closed_loop_lowers_gain(self) -> None:
        fast = synthesize_imc_gains(0.01, 0.2, 1000, 0.5)
        slow = synthesize_imc_gains(0.01, 0.2, 1000, 2.0)
        assert slow.kc == pytest.approx(fast.kc / 4)
        assert slow.ti == fast.ti

    @pytest.mark.parametrize("scale,expected", [(0.001, 0.05), (100.0, 5.0)])
    def test_lambda_scale_clamped(self, scale: float, expected: float) -> None:
        gains = synthesize_imc_gains(0.01, 0.2, 1000, scale)
        assert gains.lambda_s == pytest.approx(expected * 0.2)

    def test_negative_plant_gives_negative_gain(self) -> None:
        assert synthesize_imc_gains(-0.01, 0.2, 1000).kc < 0

    @pytest.mark.parametrize("k", [0.0, 1e-12, float("nan")])
    def test_plant_gain_too_small(self, k: float) -> None:
        with pytest.raises(EstimationError, match="too small"):
            synthesize_imc_gains(k, 0.1, 100)

    @pytest.mark.parametrize("qpps", [0, -5])
    def test_qpps_must_be_positive(self, qpps: int) -> None:
        with pytest.raises(LogicalError, match="QPPS"):
            synthesize_imc_gains(0.01, 0.1, qpps)

    def test_non_positive_tau(self) -> None:
        with pytest.raises(EstimationError, match="positive"):
            synthesize_imc_gains(0.01, 0.0, 100)


class TestAutotuneVelocityStep:
    """Step pipeline against the twin."""

    def test_suggests_gains_without_writing(self, sim_driver: MotorDriver) -> None:
        """Verifies the default run only suggests a PID.

        Arrangement:
        1. Default twin plant (gain 100, tau 0.1) and stored QPPS 100,
           so the normalised plant gain is close to 1.
        2. apply_result left False.

        Assertion Strategy:
        - Kc near tau / (1 * 0.5 tau) = 2 regardless of the tau estimate.
        - Stored PID untouched, QPPS preserved in the suggestion.
        """
        result = autotune_velocity_step(sim_driver, 1)

        assert result.method == "step"
        assert result.backend == "simulated"
        assert result.gains.kc == pytest.approx(2.0, rel=0.1)
        assert result.gains.ti == pytest.approx(result.estimate.tau_s)
        assert result.suggested.qpps == 100
        assert result.previous == VelocityPid(qpps=100)
        assert not result.applied
        assert result.apply_error is None
        assert result.sample_count == 201
        assert sim_driver.read_velocity_pid(1) == VelocityPid(qpps=100)

    def test_apply_writes_suggestion(self, sim_driver: MotorDriver) -> None:
        result = autotune_velocity_step(sim_driver, 2, apply_result=True)
        assert result.applied
        assert sim_driver.read_velocity_pid(2) == result.suggested

    def test_apply_failure_is_reported(
        self, sim_runtime: MotorRuntime, sim_driver: MotorDriver
    ) -> None:
        def failing_write(motor: int, pid: VelocityPid) -> None:
            raise TransportError("write rejected")

        sim_runtime.simulated_backend.write_velocity_pid = failing_write  # type: ignore[method-assign]
        result = autotune_velocity_step(sim_driver, 1, apply_result=True)

        assert not result.applied
        assert result.apply_error == "write rejected"

    def test_zero_qpps_rejected(self, sim_driver: MotorDriver) -> None:
        sim_driver.write_velocity_pid(1, VelocityPid(qpps=0))
        with pytest.raises(LogicalError, match="QPPS"):
            autotune_velocity_step(sim_driver, 1)

    def test_to_dict(self, sim_driver: MotorDriver) -> None:
        data = autotune_velocity_step(sim_driver, 1, duration_ms=1000).to_dict()
        assert data["method"] == "step"
        assert set(data["estimate"]) >= {"k", "tau_s", "r2"}
        assert data["suggested"]["qpps"] == 100
        assert data["applied"] is False

    def test_hardware_failure_without_fallback(self, hw_runtime: MotorRuntime) -> None:
        with pytest.raises(TransportError):
            autotune_velocity_step(MotorDriver.from_runtime(hw_runtime), 1)

    def test_hardware_failure_with_fallback(
        self, hw_runtime: MotorRuntime, mock_port: MockSerialPort
    ) -> None:
        """Verifies autotune falls back to the twin and applies there.

        Arrangement:
        1. Hardware runtime whose mock port never answers.
        2. Fallback allowed and apply_result True.

        Assertion Strategy:
        The run is reported as simulated with a fallback reason, the
        suggestion lands on the twin, and only the failed velocity PID
        read touched the serial port.
        """
        driver = MotorDriver.from_runtime(hw_runtime)
        result = autotune_velocity_step(
            driver, 1, apply_result=True, allow_simulation_fallback=True
        )

        assert result.backend == "simulated"
        assert result.fallback_reason is not None
        assert result.applied
        assert hw_runtime.simulated_backend.read_velocity_pid(1) == result.suggested
        assert mock_port.written == [bytes([0x80, 55])]


class TestAutotuneVelocityFrf:
    def test_twin_sweep(self, sim_runtime: MotorRuntime, sim_driver: MotorDriver) -> None:
        """FRF pipeline recovers K and tau of a fast twin plant."""
        sim_runtime.simulation.set_plant_params(1, tau=0.1, gain=10000.0)
        result = autotune_velocity_frf(
            sim_driver, 1, start_hz=0.5, end_hz=3.0, points=5, amplitude_cmd=8000
        )

        assert result.method == "frf"
        assert result.estimate.tau_s == pytest.approx(0.1, rel=0.3)
        assert result.estimate.k_mag == pytest.approx(10000 / 32767, rel=0.15)
        assert result.gains.k_eff == pytest.approx(100.0, rel=0.15)
        assert len(result.to_dict()["points"]) == 5
        assert not result.applied

    def test_apply(self, sim_runtime: MotorRuntime, sim_driver: MotorDriver) -> None:
        sim_runtime.simulation.set_plant_params(2, tau=0.1, gain=10000.0)
        result = autotune_velocity_frf(
            sim_driver, 2, start_hz=1.0, end_hz=2.0, points=2, apply_result=True
        )
        assert result.applied
        assert sim_driver.read_velocity_pid(2) == result.suggested

    def test_bad_motor(self, sim_driver: MotorDriver) -> None:
        with pytest.raises(LogicalError):
            autotune_velocity_frf(sim_driver, 0)
