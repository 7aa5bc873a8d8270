import logging
import numpy as np
import pytest
from pytest import approx
from scfpack import BulkConditions, SolverConfig, SolverState, SequentialSolver, solve, sweep, Profile
from scfpack import ConfigurationError, NumericalDivergence, ConvergenceFailure
from scfpack.solvers import IterationState, picard, anderson
from tools import hard_wall_problem

CONVERGED_CONFIG = SolverConfig.Picard(tolerance=1e-8, damping_factor=0.1, max_iterations=1000)


@pytest.mark.parametrize('kwargs', [{'damping_factor' : 0}, {'damping_factor' : 1.5}, {'tolerance' : 0},
                                    {'max_iterations' : 0}, {'mixing' : 'broyden'}, {'history_depth' : 0},
                                    {'convergence' : 'maximum'}, {'consecutive' : 0}, {'log_every' : -1}])
def test_invalid_config(kwargs):
    with pytest.raises(ConfigurationError):
        SolverConfig(**kwargs)


def test_config_replace():
    config = SolverConfig.Anderson(tolerance=1e-6, history_depth=4)
    other = config.replace(damping_factor=0.01)
    assert other.damping_factor == 0.01 and config.damping_factor == 0.05
    assert other.mixing == 'anderson' and other.history_depth == 4 and other.tolerance == 1e-6


def test_terminal_states_are_final():
    state = IterationState(np.ones(3))
    assert state.state == SolverState.INITIALIZED
    state.transition(SolverState.ITERATING)
    state.transition(SolverState.CONVERGED)
    assert state.state.is_terminal
    with pytest.raises(RuntimeError):
        state.transition(SolverState.ITERATING)


@pytest.mark.parametrize('driver, config', [(picard, SolverConfig.Picard(tolerance=1e-12, damping_factor=0.5)),
                                            (anderson, SolverConfig.Anderson(tolerance=1e-12, damping_factor=0.5,
                                                                             history_depth=3))])
def test_generic_fixed_point(driver, config):
    state = driver(np.cos, np.array([1.0]), config=config)
    assert state.state == SolverState.CONVERGED
    assert state.density[0] == approx(0.7390851332, abs=1e-9)
    assert state.iteration == len(state.residual_history)


def test_uniform_bulk_is_a_fixed_point():
    graph, bulk, _ = hard_wall_problem(rho_b=0.4)
    result = solve(graph, None, bulk)
    assert result.converged
    assert result.iterations == 1
    assert result.density == approx(0.4)

    result = solve(graph, None, bulk, solver_config=SolverConfig(consecutive=3))
    assert result.iterations == 3


def test_converged_profile_is_idempotent():
    graph, bulk, wall = hard_wall_problem(rho_b=0.3)
    first = solve(graph, None, bulk, wall, CONVERGED_CONFIG)
    assert first.converged
    assert first.status == SolverState.CONVERGED
    assert first.residual < 1e-8

    second = solve(graph, first.profile, bulk, wall, CONVERGED_CONFIG)
    assert second.converged
    assert second.iterations == 1
    assert second.density == approx(first.density)


def test_anderson_agrees_with_picard():
    graph, bulk, wall = hard_wall_problem(rho_b=0.3)
    reference = solve(graph, None, bulk, wall, CONVERGED_CONFIG)
    result = solve(graph, None, bulk, wall, SolverConfig.Anderson(tolerance=1e-9, max_iterations=2000))
    assert result.converged
    assert result.solver == 'anderson'
    assert result.density == approx(reference.density, abs=1e-5)


def test_divergence_carries_last_finite_density():
    graph, bulk, wall = hard_wall_problem(rho_b=0.3)

    def poison(state):
        if state.iteration == 3:
            state.density[0, 100] = np.nan

    with pytest.raises(NumericalDivergence) as err:
        solve(graph, None, bulk, wall, CONVERGED_CONFIG.replace(callback=poison))
    assert err.value.iteration == 3
    assert err.value.snapshot.shape == (1, ) + graph.grid.shape
    assert np.all(np.isfinite(err.value.snapshot))


def test_max_iterations_returns_best_effort():
    graph, bulk, wall = hard_wall_problem(rho_b=0.3)
    with pytest.warns(RuntimeWarning):
        result = solve(graph, None, bulk, wall, SolverConfig.Picard(max_iterations=5))
    assert not result.converged
    assert result.status == SolverState.MAX_ITER_EXCEEDED
    assert result.iterations == 5
    assert len(result.residual_history) == 5
    assert isinstance(result.failure, ConvergenceFailure)
    assert result.failure.result is result
    with pytest.raises(ConvergenceFailure):
        result.raise_on_failure()


def test_abort():
    graph, bulk, wall = hard_wall_problem(rho_b=0.3)
    config = SolverConfig(abort=lambda state: state.iteration >= 4)
    with pytest.warns(RuntimeWarning):
        result = solve(graph, None, bulk, wall, config)
    assert result.status == SolverState.ABORTED
    assert result.iterations == 4
    assert result.message.startswith('Aborted')


def test_progress_is_logged(caplog):
    graph, bulk, wall = hard_wall_problem(rho_b=0.3)
    with caplog.at_level(logging.INFO, logger='scfpack'):
        with pytest.warns(RuntimeWarning):
            solve(graph, None, bulk, wall, SolverConfig(max_iterations=4, log_every=2))
    assert 'Iteration 2' in caplog.text
    assert 'Iteration 4' in caplog.text
    assert 'max number of iterations' in caplog.text


def test_invalid_input_is_rejected_before_iterating():
    graph, bulk, wall = hard_wall_problem(rho_b=0.3)
    calls = []
    config = SolverConfig(callback=calls.append)
    with pytest.raises(ConfigurationError):
        solve(graph, np.ones(graph.grid.N), bulk, wall, config)
    with pytest.raises(ConfigurationError):
        solve(graph, - np.ones((1, graph.grid.N)), bulk, wall, config)
    with pytest.raises(ConfigurationError):
        solve(graph, [Profile(np.ones(10), None)], bulk, wall, config)
    with pytest.raises(ConfigurationError):
        solve(graph, None, BulkConditions(2.0, [0.3]), wall, config)
    with pytest.raises(ConfigurationError):
        solve(graph, None, BulkConditions(1.0, [0.3, 0.2]), wall, config)
    with pytest.raises(ConfigurationError):
        solve(graph, None, BulkConditions(1.0, [0.3], excess_chemical_potential=[1.0, 2.0], pressure=1.0), wall,
              config)
    with pytest.raises(ConfigurationError):
        solve(graph, None, bulk, np.full((1, graph.grid.N), np.nan), config)
    with pytest.raises(ConfigurationError):
        BulkConditions(1.0, [0.0])
    assert len(calls) == 0


def test_sequential_solver_falls_back_on_divergence():
    graph, bulk, wall = hard_wall_problem(rho_b=0.3)
    poisoned = []

    def poison(state):
        if len(poisoned) == 0 and state.iteration == 2:
            poisoned.append(state.iteration)
            state.density[0, 100] = np.inf

    solver = SequentialSolver()
    solver.add_picard(1e-3, damping_factor=0.1, callback=poison)
    solver.add_picard(1e-8, damping_factor=0.1, max_iterations=1000)
    result = solver(graph, None, bulk, wall)
    assert poisoned == [2]
    assert result.converged

    poisoned.clear()
    solver.set_max_fallbacks(0)
    with pytest.raises(NumericalDivergence):
        solver(graph, None, bulk, wall)


def test_sequential_solver_stages():
    solver = SequentialSolver()
    solver.add_picard(1e-3).add_picard(1e-5).add_anderson(1e-9)
    assert len(solver.truncate_tol(1e-5).stages) == 2
    assert len(solver.truncate_tol(1e-12).stages) == 3
    with pytest.warns(RuntimeWarning):
        solver.add_picard(1e-3)
    graph, bulk, wall = hard_wall_problem()
    with pytest.raises(ConfigurationError):
        SequentialSolver()(graph, None, bulk, wall)


def test_sweep():
    graph, _, wall = hard_wall_problem(rho_b=0.3)
    conditions = [BulkConditions(1.0, [rho]) for rho in (0.1, 0.2, 0.3)]
    results = sweep(graph, conditions, wall, CONVERGED_CONFIG, max_workers=3)
    assert [r.bulk.density[0] for r in results] == approx([0.1, 0.2, 0.3])
    assert all(r.converged for r in results)
    reference = solve(graph, None, conditions[1], wall, CONVERGED_CONFIG)
    assert results[1].density == approx(reference.density)
    assert results[2].grand_potential < results[0].grand_potential
