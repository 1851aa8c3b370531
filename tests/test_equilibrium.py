"""Tests for the initial fiber equilibrium solve.

:copyright: Copyright 2024 by MLL <mll@mll.bio>.
:license: Apache 2.0. See LICENSE for details.
"""

import math

import pytest
import jax
import jax.numpy as jnp
import optimistix as optx

from myotendon.equilibrium import (
    EquilibriumConfig,
    EquilibriumStatus,
    bracket_root,
    solve_fiber_equilibrium,
)
from myotendon.errors import (
    ConvergenceFailureError,
    EquilibriumNotFoundError,
    InvalidArgumentError,
)
from myotendon.host import HostSystem

from synthetic_muscles import AlwaysLengtheningMuscle, LinearSpringMuscle


# Enable 64-bit for numerical precision
jax.config.update("jax_enable_x64", True)


class TestEquilibriumConfig:
    """Tests for config validation and construction."""

    def test_defaults(self):
        config = EquilibriumConfig()
        assert config.max_steps == 256
        assert config.rtol == 1e-10

    @pytest.mark.parametrize(
        "kwargs",
        [
            dict(rtol=-1.0),
            dict(atol=0.0),
            dict(atol=math.nan),
            dict(max_steps=0),
            dict(max_bracket_expansions=2.5),
            dict(initial_bracket_fraction=math.inf),
        ],
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(InvalidArgumentError):
            EquilibriumConfig(**kwargs)

    def test_from_dict(self):
        config = EquilibriumConfig.from_dict({"atol": 1e-8, "max_steps": 50})
        assert config.atol == 1e-8
        assert config.max_steps == 50
        assert config.rtol == EquilibriumConfig().rtol

    def test_from_dict_unknown_key(self):
        with pytest.raises(InvalidArgumentError):
            EquilibriumConfig.from_dict({"tolerance": 1e-8})


class TestBracketRoot:
    """Tests for the interval expansion."""

    def test_brackets_nearby_root(self):
        bracket = bracket_root(lambda x: 0.07 - x, 0.1, 0.0, math.inf, EquilibriumConfig())
        assert bracket is not None
        lower, upper = bracket
        assert lower <= 0.07 <= upper

    def test_brackets_root_above(self):
        bracket = bracket_root(lambda x: 3.0 - x, 0.1, 0.0, math.inf, EquilibriumConfig())
        assert bracket is not None
        lower, upper = bracket
        assert lower <= 3.0 <= upper

    def test_probes_stay_inside_bounds(self):
        probes = []

        def fn(x):
            probes.append(x)
            return 1.0

        config = EquilibriumConfig(max_bracket_expansions=30)
        assert bracket_root(fn, 0.5, 0.0, 1.0, config) is None
        assert all(0.0 < x < 1.0 for x in probes)

    def test_root_close_to_lower_bound(self):
        bracket = bracket_root(lambda x: 1e-4 - x, 0.1, 0.0, 1.0, EquilibriumConfig())
        assert bracket is not None
        assert bracket[0] <= 1e-4 <= bracket[1]

    def test_non_finite_values_are_not_sign_changes(self):
        config = EquilibriumConfig(max_bracket_expansions=5)
        assert bracket_root(lambda x: math.nan, 0.1, 0.0, 1.0, config) is None


class TestSolveFiberEquilibrium:
    """Tests for the tagged solver entry point."""

    def test_linear_root(self):
        result = solve_fiber_equilibrium(lambda x: 2.0 * (0.0731 - x), 0.1)
        assert result.succeeded
        assert result.status is EquilibriumStatus.SUCCESS
        assert abs(result.fiber_length - 0.0731) < 1e-8
        assert abs(result.fiber_velocity) < 1e-7
        assert result.num_steps > 0

    def test_nonlinear_root(self):
        result = solve_fiber_equilibrium(lambda x: jnp.tanh(20.0 * (0.12 - x)), 0.05, 0.0, 1.0)
        assert result.succeeded
        assert abs(result.fiber_length - 0.12) < 1e-8

    def test_start_at_root(self):
        result = solve_fiber_equilibrium(lambda x: 0.0 * x, 0.1)
        assert result.succeeded
        assert result.fiber_length == 0.1
        assert result.num_steps == 0

    @pytest.mark.parametrize("start", [0.0, -0.1, math.nan, 2.0])
    def test_start_outside_domain(self, start):
        result = solve_fiber_equilibrium(lambda x: 0.5 - x, start, 0.0, 1.0)
        assert result.status is EquilibriumStatus.EQUILIBRIUM_NOT_FOUND

    def test_no_root(self):
        result = solve_fiber_equilibrium(lambda x: 1.0 + x**2, 0.1)
        assert result.status is EquilibriumStatus.EQUILIBRIUM_NOT_FOUND
        assert not result.succeeded
        with pytest.raises(EquilibriumNotFoundError):
            result.raise_for_status()

    def test_step_limit(self):
        config = EquilibriumConfig(max_steps=2)
        result = solve_fiber_equilibrium(lambda x: 0.0731 - x, 0.1, config=config)
        assert result.status is EquilibriumStatus.CONVERGENCE_FAILURE
        with pytest.raises(ConvergenceFailureError):
            result.raise_for_status()

    def test_custom_root_finder(self):
        result = solve_fiber_equilibrium(
            lambda x: 0.0731 - x,
            0.1,
            root_finder=optx.Bisection(rtol=1e-12, atol=1e-12),
        )
        assert result.succeeded
        assert abs(result.fiber_length - 0.0731) < 1e-10


class TestMuscleEquilibrium:
    """Tests for equilibrium through the muscle interface."""

    @pytest.fixture
    def spring(self):
        system = HostSystem()
        muscle = system.add_component(
            LinearSpringMuscle(
                "biceps",
                stiffness=5.0,
                rest_length=0.0837,
                default_activation=0.2,
                default_fiber_length=0.1,
            )
        )
        return muscle, system.init_state()

    @pytest.mark.parametrize("tolerance", [1e-10, 1e-6])
    def test_converges_to_rest_length(self, spring, tolerance):
        muscle, state = spring
        muscle = muscle.with_equilibrium_config(EquilibriumConfig(rtol=tolerance, atol=tolerance))
        new_state = muscle.compute_initial_fiber_equilibrium(state)

        tol = muscle.equilibrium_config.atol + muscle.equilibrium_config.rtol * 0.0837
        assert abs(float(muscle.get_fiber_length(new_state)) - 0.0837) < tol

    def test_activation_untouched(self, spring):
        muscle, state = spring
        new_state = muscle.compute_initial_fiber_equilibrium(state)
        assert muscle.get_activation(new_state) == muscle.get_activation(state)

    def test_input_state_untouched(self, spring):
        muscle, state = spring
        y_before = jnp.array(state.y)
        muscle.compute_initial_fiber_equilibrium(state)
        assert jnp.array_equal(state.y, y_before)

    def test_starts_from_stored_fiber_length(self, spring):
        muscle, state = spring
        state = muscle.set_fiber_length(state, 0.05)
        result = muscle.solve_initial_fiber_equilibrium(state)
        assert result.succeeded
        lower, upper = result.bracket
        assert lower <= 0.05 <= upper
        assert abs(result.fiber_length - 0.0837) < 1e-8

    def test_zero_velocity_after_equilibrium(self, spring):
        muscle, state = spring
        state = muscle.compute_initial_fiber_equilibrium(state)
        state = muscle.compute_state_variable_derivatives(state)
        assert abs(float(muscle.get_state_variable_derivative(state, "fiber_length"))) < 1e-8

    def test_no_root_raises(self):
        system = HostSystem()
        muscle = system.add_component(AlwaysLengtheningMuscle("biceps"))
        state = system.init_state()

        result = muscle.solve_initial_fiber_equilibrium(state)
        assert result.status is EquilibriumStatus.EQUILIBRIUM_NOT_FOUND
        with pytest.raises(EquilibriumNotFoundError):
            muscle.compute_initial_fiber_equilibrium(state)

    def test_convergence_failure_raises(self, spring):
        muscle, state = spring
        muscle = muscle.with_equilibrium_config(EquilibriumConfig(max_steps=1))
        with pytest.raises(ConvergenceFailureError):
            muscle.compute_initial_fiber_equilibrium(state)

    def test_invalid_stored_length(self, spring):
        muscle, state = spring
        state = muscle.set_fiber_length(state, -0.02)
        with pytest.raises(EquilibriumNotFoundError):
            muscle.compute_initial_fiber_equilibrium(state)
