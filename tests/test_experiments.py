"""Tests for the step and frequency response experiments.

The experiments run end to end against the digital twin on a manual
clock, so a 2 s step response completes instantly and deterministically.
"""

from __future__ import annotations

import pytest

from roboclaw_mcp.analysis.estimators import estimate_step_response
from roboclaw_mcp.analysis.experiments import (
    nyquist_hz,
    run_frequency_response,
    run_step_response,
)
from roboclaw_mcp.devices import MotorDriver
from roboclaw_mcp.drivers.config import MotorRuntime
from roboclaw_mcp.errors import EstimationError, LogicalError, TransportError
from tests.helpers import MockSerialPort


class TestRunStepResponse:
    """PWM step experiment."""

    def test_twin_step_identifies_plant(self, sim_driver: MotorDriver) -> None:
        """Verifies a step on the twin yields its first-order parameters.

        Arrangement:
        1. Default plant: tau 0.1 s, gain 100 counts/s at full duty.
        2. Step to PWM 16000 after 200 ms, 2 s record at 10 ms.

        Assertion Strategy:
        - 201 samples with the command switching at 200 ms.
        - Final speed about 100 * 16000 / 32767 (49 after rounding).
        - Estimated tau near 0.1 s; the Euler integration and one-sample
          command delay keep it within (0.07, 0.15).
        """
        result = run_step_response(sim_driver, 1, 16000)

        assert len(result.samples) == 201
        assert result.backend == "simulated"
        assert result.fallback_reason is None
        assert [s.cmd for s in result.samples[:20]] == [0] * 20
        assert all(s.cmd == 16000 for s in result.samples[21:])
        assert result.samples[-1].vel == pytest.approx(49, abs=1)

        estimate = estimate_step_response(result.samples)
        assert estimate.y_inf == pytest.approx(49, abs=1)
        assert 0.07 < estimate.tau_s < 0.15
        assert estimate.k == pytest.approx(49 / 16000, rel=0.05)

    def test_motor_left_stopped(self, sim_driver: MotorDriver) -> None:
        run_step_response(sim_driver, 2, -12000, duration_ms=500)
        assert sim_driver.read_pwm().m2 == 0

    def test_step_clamped(self, sim_driver: MotorDriver) -> None:
        result = run_step_response(sim_driver, 1, 50000, duration_ms=300)
        assert result.pwm_step == 32767
        assert result.samples[-1].cmd == 32767

    def test_to_dict(self, sim_driver: MotorDriver) -> None:
        data = run_step_response(sim_driver, 1, 8000, duration_ms=300).to_dict()
        assert data["motor"] == 1
        assert data["pwm_step"] == 8000
        assert data["backend"] == "simulated"
        assert data["samples"][0] == {"t_ms": 0.0, "vel": 0.0, "cmd": 0}

    @pytest.mark.parametrize("delay", [-1.0, 2000.0, 2500.0])
    def test_apply_delay_outside_record(self, sim_driver: MotorDriver, delay: float) -> None:
        with pytest.raises(LogicalError, match="apply_delay_ms"):
            run_step_response(sim_driver, 1, 16000, apply_delay_ms=delay)

    def test_bad_motor(self, sim_driver: MotorDriver) -> None:
        with pytest.raises(LogicalError):
            run_step_response(sim_driver, 3, 16000)

    def test_hardware_failure_without_fallback(self, hw_runtime: MotorRuntime) -> None:
        with pytest.raises(TransportError):
            run_step_response(MotorDriver.from_runtime(hw_runtime), 1, 16000)

    def test_hardware_failure_falls_back_to_twin(
        self, hw_runtime: MotorRuntime, mock_port: MockSerialPort
    ) -> None:
        """Verifies the experiment reruns on the twin when allowed.

        Arrangement:
        1. Hardware runtime whose mock port never answers.
        2. allow_simulation_fallback=True.

        Assertion Strategy:
        The result comes from the twin and records why. Only the initial
        stop command reached the serial port, and the runtime itself stays
        in hardware mode.
        """
        result = run_step_response(
            MotorDriver.from_runtime(hw_runtime),
            1,
            16000,
            duration_ms=500,
            allow_simulation_fallback=True,
        )

        assert result.backend == "simulated"
        assert result.fallback_reason is not None
        assert "No response" in result.fallback_reason
        assert len(mock_port.written) == 1
        assert not hw_runtime.selector.simulated

    def test_offline_controller_falls_back(self, offline_runtime: MotorRuntime) -> None:
        result = run_step_response(
            MotorDriver.from_runtime(offline_runtime),
            1,
            16000,
            duration_ms=300,
            allow_simulation_fallback=True,
        )
        assert result.backend == "simulated"
        assert "not configured" in (result.fallback_reason or "")


class TestRunFrequencyResponse:
    """Sinusoidal PWM sweep."""

    def test_nyquist_limit(self) -> None:
        assert nyquist_hz(10) == 50.0
        assert nyquist_hz(100) == 5.0

    def test_twin_sweep_shows_first_order_rolloff(
        self, sim_runtime: MotorRuntime, sim_driver: MotorDriver
    ) -> None:
        sim_runtime.simulation.set_plant_params(1, tau=0.1, gain=10000.0)
        result = run_frequency_response(
            sim_driver, 1, start_hz=0.5, end_hz=2.0, points=3, amplitude_cmd=8000
        )

        assert [p.freq_hz for p in result.points] == pytest.approx([0.5, 1.0, 2.0])
        gains = [p.gain for p in result.points]
        assert gains[0] > gains[1] > gains[2]
        assert gains[0] == pytest.approx(10000 / 32767 / (1 + 0.314**2) ** 0.5, rel=0.1)
        assert all(-90 < p.phase_deg < 0 for p in result.points)
        assert result.skipped_hz == []
        assert sim_driver.read_pwm().m1 == 0

    def test_samples_on_continuous_time_axis(self, sim_driver: MotorDriver) -> None:
        result = run_frequency_response(sim_driver, 1, start_hz=2.0, end_hz=4.0, points=2)
        times = [s.t_ms for s in result.samples]
        assert times == sorted(times)
        assert max(abs(s.cmd) for s in result.samples) <= 8000
        data = result.to_dict(include_samples=False)
        assert "samples" not in data
        assert len(data["points"]) == 2

    def test_frequencies_above_nyquist_skipped(self, sim_driver: MotorDriver) -> None:
        result = run_frequency_response(
            sim_driver, 1, start_hz=1.0, end_hz=10.0, points=3, sample_interval_ms=100
        )
        assert result.skipped_hz == pytest.approx([10.0])
        assert len(result.points) == 2

    def test_all_frequencies_above_nyquist(self, sim_driver: MotorDriver) -> None:
        with pytest.raises(EstimationError, match="Nyquist"):
            run_frequency_response(
                sim_driver, 1, start_hz=6.0, end_hz=10.0, points=2, sample_interval_ms=100
            )

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"start_hz": 0.0},
            {"start_hz": 5.0, "end_hz": 1.0},
            {"points": 0},
            {"cycles": 0},
            {"amplitude_cmd": 0},
        ],
    )
    def test_invalid_sweep(self, sim_driver: MotorDriver, kwargs: dict) -> None:
        with pytest.raises(LogicalError):
            run_frequency_response(sim_driver, 1, **kwargs)

    def test_single_cycle_keeps_all_samples(self, sim_driver: MotorDriver) -> None:
        result = run_frequency_response(
            sim_driver, 2, start_hz=2.0, end_hz=2.0, points=1, cycles=1
        )
        assert len(result.points) == 1
        assert len(result.samples) == 51

    def test_hardware_failure_falls_back(self, hw_runtime: MotorRuntime) -> None:
        result = run_frequency_response(
            MotorDriver.from_runtime(hw_runtime),
            1,
            start_hz=2.0,
            end_hz=2.0,
            points=1,
            allow_simulation_fallback=True,
        )
        assert result.backend == "simulated"
        assert result.fallback_reason is not None
