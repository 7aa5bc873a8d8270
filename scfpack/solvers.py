"""
This is where the fixed point solvers are implemented: Damped Picard iterations, and Anderson mixing.

`solve` is the entry point for a single equilibrium density profile. It seeds an IterationState, and drives it through
the state machine

    INITIALIZED -> ITERATING -> {CONVERGED, DIVERGED, MAX_ITER_EXCEEDED, ABORTED}

using the Euler-Lagrange equation

    rho_i(r) = rho_b,i exp(- beta delta F_ex / delta rho_i(r) - beta V_i(r) + beta mu_ex,i)

as the fixed point. Terminal states are final. Divergence (non-finite values) raises NumericalDivergence carrying the
last finite density, running out of iterations (or being aborted) returns the best-effort ProfileResult with a
ConvergenceFailure attached.

Retries (e.g. with reduced damping) are the business of the caller, see SequentialSolver.
"""
import copy
import enum
import logging
import warnings
from collections import deque
from concurrent.futures import ThreadPoolExecutor
import numpy as np
from scfpack.external_potential import external_potential_array
from scfpack.result import ProfileResult
from scfpack.errors import ConfigurationError, NumericalDivergence

logger = logging.getLogger(__name__)

MIXING_SCHEMES = ('picard', 'anderson')
CONVERGENCE_CRITERIA = ('absolute', 'relative')


class SolverState(enum.Enum):
    INITIALIZED = 'initialized'
    ITERATING = 'iterating'
    CONVERGED = 'converged'
    DIVERGED = 'diverged'
    MAX_ITER_EXCEEDED = 'max_iter_exceeded'
    ABORTED = 'aborted'

    @property
    def is_terminal(self):
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset((SolverState.CONVERGED, SolverState.DIVERGED, SolverState.MAX_ITER_EXCEEDED,
                             SolverState.ABORTED))


class SolverConfig:
    """
    Options for a single solve.

    Args:
        max_iterations (int) : Maximum number of iterations
        tolerance (float) : Convergence when the RMS residual is below this value
        damping_factor (float) : Mixing parameter in (0, 1]. For Picard iterations the fraction of the new density that
                                is mixed in, for Anderson mixing the weight of the residuals.
        mixing (str) : 'picard' or 'anderson'
        history_depth (int) : Number of previous residuals used by Anderson mixing
        log_every (int) : Log the residual every log_every iterations (0 to disable)
        consecutive (int) : Number of consecutive iterations that must satisfy the tolerance
        convergence (str) : 'absolute' RMS residual, or 'relative' to the RMS density
        ensure_positive (bool) : For Anderson mixing, use the absolute value of the mixed density
        abort (callable, optional) : Called with the IterationState at the top of each iteration, return True to stop
        callback (callable, optional) : Called with the IterationState at the end of each iteration
    """

    def __init__(self, max_iterations=500, tolerance=1e-8, damping_factor=0.1, mixing='picard', history_depth=10,
                 log_every=0, consecutive=1, convergence='absolute', ensure_positive=True, abort=None, callback=None):
        if mixing not in MIXING_SCHEMES:
            raise ConfigurationError(f'Unknown mixing scheme : {mixing}. Valid schemes are {MIXING_SCHEMES}.')
        if convergence not in CONVERGENCE_CRITERIA:
            raise ConfigurationError(f'Unknown convergence criterion : {convergence}. '
                                     f'Valid criteria are {CONVERGENCE_CRITERIA}.')
        if not (0 < damping_factor <= 1):
            raise ConfigurationError(f'damping_factor must be in (0, 1], got {damping_factor}.')
        if not (tolerance > 0):
            raise ConfigurationError(f'tolerance must be positive, got {tolerance}.')
        if int(max_iterations) < 1:
            raise ConfigurationError(f'max_iterations must be at least 1, got {max_iterations}.')
        if int(history_depth) < 1:
            raise ConfigurationError(f'history_depth must be at least 1, got {history_depth}.')
        if int(consecutive) < 1:
            raise ConfigurationError(f'consecutive must be at least 1, got {consecutive}.')
        if int(log_every) < 0:
            raise ConfigurationError(f'log_every can not be negative, got {log_every}.')

        self.max_iterations = int(max_iterations)
        self.tolerance = tolerance
        self.damping_factor = damping_factor
        self.mixing = mixing
        self.history_depth = int(history_depth)
        self.log_every = int(log_every)
        self.consecutive = int(consecutive)
        self.convergence = convergence
        self.ensure_positive = ensure_positive
        self.abort = abort
        self.callback = callback

    @staticmethod
    def Picard(tolerance=1e-8, damping_factor=0.1, max_iterations=500, **kwargs):
        """Construction
        Damped Picard iterations
        """
        return SolverConfig(max_iterations=max_iterations, tolerance=tolerance, damping_factor=damping_factor,
                            mixing='picard', **kwargs)

    @staticmethod
    def Anderson(tolerance=1e-8, damping_factor=0.05, history_depth=10, max_iterations=500, **kwargs):
        """Construction
        Anderson mixing over the last history_depth residuals
        """
        return SolverConfig(max_iterations=max_iterations, tolerance=tolerance, damping_factor=damping_factor,
                            mixing='anderson', history_depth=history_depth, **kwargs)

    def replace(self, **kwargs):
        """Utility
        Copy with some options changed
        """
        options = copy.copy(vars(self))
        options.update(kwargs)
        return SolverConfig(**options)

    def __repr__(self):
        r = f'SolverConfig({self.mixing}, tolerance : {self.tolerance}, damping : {self.damping_factor}, ' \
            f'max_iterations : {self.max_iterations}'
        if self.mixing == 'anderson':
            r += f', history : {self.history_depth}'
        return r + ')'


class BulkConditions:
    """
    The bulk state the inhomogeneous fluid is in equilibrium with. Values that are not supplied are computed from
    the functional (see `complete`).

    Args:
        temperature (float) : Temperature [K]
        density (Iterable[float]) : Bulk density of each species
        excess_chemical_potential (Iterable[float], optional) : Reduced excess chemical potential, beta mu_ex
        pressure (float, optional) : Reduced pressure, beta p
    """

    def __init__(self, temperature, density, excess_chemical_potential=None, pressure=None):
        self.temperature = temperature
        self.density = np.atleast_1d(np.asarray(density, dtype=float))
        self.excess_chemical_potential = None if excess_chemical_potential is None \
            else np.atleast_1d(np.asarray(excess_chemical_potential, dtype=float))
        self.pressure = pressure

        if any(self.density <= 0) or not all(np.isfinite(self.density)):
            raise ConfigurationError(f'Bulk densities must be positive and finite, got {self.density}.')

    def complete(self, graph):
        """
        Fill in the excess chemical potential and pressure from the functional.

        Args:
            graph (FunctionalGraph) : The functional
        Returns:
            BulkConditions : With all values set
        Raises:
            ConfigurationError : If the conditions do not match the functional
        """
        if len(self.density) != graph.n_species:
            raise ConfigurationError(f'Got {len(self.density)} bulk densities, but the functional has '
                                     f'{graph.n_species} species.')
        if not np.isclose(self.temperature, graph.temperature):
            raise ConfigurationError(f'Bulk conditions at T = {self.temperature} K, but the functional was built at '
                                     f'T = {graph.temperature} K.')
        if self.excess_chemical_potential is not None:
            if len(self.excess_chemical_potential) != graph.n_species:
                raise ConfigurationError(f'Got {len(self.excess_chemical_potential)} chemical potentials for '
                                         f'{graph.n_species} species.')
            if self.pressure is not None:
                return self
        state = graph.bulk(self.density)
        mu_ex = state.excess_chemical_potential if self.excess_chemical_potential is None \
            else self.excess_chemical_potential
        pressure = state.pressure if self.pressure is None else self.pressure
        return BulkConditions(self.temperature, self.density, mu_ex, pressure)

    @property
    def chemical_potential(self):
        """Bulk Property
        The reduced chemical potential, beta mu = ln(rho_b) + beta mu_ex (unit thermal wavelength)
        """
        return np.log(self.density) + self.excess_chemical_potential

    def __repr__(self):
        return f'BulkConditions(T : {self.temperature}, rho : {list(self.density)}, ' \
               f'beta mu_ex : {self.excess_chemical_potential}, beta p : {self.pressure})'


class IterationState:
    """
    Everything that changes during a solve. Owned by a single solve, never shared.

    Args:
        density (ndarray) : Initial density, copied
        history_depth (int) : Number of previous residuals kept for Anderson mixing
    """

    def __init__(self, density, history_depth=10):
        self.density = np.array(density, dtype=float)
        self.iteration = 0
        self.residual = np.inf
        self.residual_history = []
        self.prev_res = deque(maxlen=history_depth)
        self.prev_x = deque(maxlen=history_depth)
        self.n_consecutive = 0
        self.snapshot = np.copy(self.density)
        self.state = SolverState.INITIALIZED

    def transition(self, new_state):
        if self.state.is_terminal:
            raise RuntimeError(f'Can not go from terminal state {self.state.name} to {new_state.name}.')
        logger.debug('%s -> %s after %d iterations', self.state.name, new_state.name, self.iteration)
        self.state = new_state

    def __repr__(self):
        return f'IterationState({self.state.name}, iteration : {self.iteration}, residual : {self.residual})'


def euler_lagrange(graph, rho, bulk, beta_vext):
    """
    The right hand side of the Euler-Lagrange equation, for the densities rho.

    Args:
        graph (FunctionalGraph) : The functional
        rho (ndarray) : Densities, shape (n_species, *grid.shape)
        bulk (BulkConditions) : Completed bulk conditions
        beta_vext (ndarray) : Reduced external potential, shape (n_species, *grid.shape)
    Returns:
        ndarray : The new densities
    """
    dfdrho = graph.evaluate(rho).dfdrho
    expand = (graph.n_species, ) + (1, ) * graph.grid.ndim
    rho_b = bulk.density.reshape(expand)
    mu_ex = bulk.excess_chemical_potential.reshape(expand)
    return rho_b * np.exp(- dfdrho - beta_vext + mu_ex)


def rms(x):
    return np.sqrt(np.mean(np.square(x)))


def _measure(residual, x, config):
    res = rms(residual)
    if config.convergence == 'relative':
        res /= max(rms(x), np.finfo(float).tiny)
    return res


def _diverge(state, what):
    state.transition(SolverState.DIVERGED)
    logger.error('Non-finite values in the %s after %d iterations.', what, state.iteration)
    raise NumericalDivergence(f'Non-finite values in the {what} after {state.iteration} iterations.',
                              snapshot=np.copy(state.snapshot), iteration=state.iteration)


def _iterate(fixpoint, state, config, mix):
    """
    The iteration loop shared by the mixing schemes. `mix(state, x, x_fix, residual)` returns the next iterate.
    """
    state.transition(SolverState.ITERATING)
    while True:
        if (config.abort is not None) and config.abort(state):
            state.transition(SolverState.ABORTED)
            break
        if state.iteration >= config.max_iterations:
            state.transition(SolverState.MAX_ITER_EXCEEDED)
            break

        x = state.density
        if not np.all(np.isfinite(x)):
            _diverge(state, 'density')
        state.snapshot = np.copy(x)

        with np.errstate(over='ignore', invalid='ignore', divide='ignore'):
            x_fix = fixpoint(x)
        if not np.all(np.isfinite(x_fix)):
            _diverge(state, 'fixed point density')

        residual = x_fix - x
        state.residual = _measure(residual, x, config)
        state.residual_history.append(state.residual)
        state.iteration += 1

        if (config.log_every > 0) and (state.iteration % config.log_every == 0):
            logger.info('Iteration %d : residual %.3e (tolerance %.1e)', state.iteration, state.residual,
                        config.tolerance)

        state.n_consecutive = state.n_consecutive + 1 if state.residual < config.tolerance else 0
        if state.n_consecutive >= config.consecutive:
            state.transition(SolverState.CONVERGED)
            break

        state.density = mix(state, x, x_fix, residual)
        if config.callback is not None:
            config.callback(state)

    return state


def picard(fixpoint, x0, config=None, state=None):
    """
    Damped Picard iterations, x_{k+1} = (1 - alpha) x_k + alpha f(x_k)

    Args:
        fixpoint (callable) : The fixed point function f(x)
        x0 (ndarray) : Initial guess
        config (SolverConfig, optional) : Options, damping_factor is alpha
        state (IterationState, optional) : State to continue from, a fresh one is created from x0 if not supplied
    Returns:
        IterationState : In a terminal state
    Raises:
        NumericalDivergence : If non-finite values occur
    """
    config = SolverConfig.Picard() if config is None else config
    state = IterationState(x0, config.history_depth) if state is None else state
    alpha = config.damping_factor

    def mix(state, x, x_fix, residual):
        return x * (1 - alpha) + x_fix * alpha

    return _iterate(fixpoint, state, config, mix)


def anderson(fixpoint, x0, config=None, state=None):
    """
    Anderson mixing: The next iterate is the combination of the previous iterates (and their residuals) that minimises
    the norm of the combined residual, with the coefficients constrained to sum to one.

    Args:
        fixpoint (callable) : The fixed point function f(x), the residual is f(x) - x
        x0 (ndarray) : Initial guess
        config (SolverConfig, optional) : Options, damping_factor is the weight of the residuals
        state (IterationState, optional) : State to continue from, a fresh one is created from x0 if not supplied
    Returns:
        IterationState : In a terminal state
    Raises:
        NumericalDivergence : If non-finite values occur
    """
    config = SolverConfig.Anderson() if config is None else config
    state = IterationState(x0, config.history_depth) if state is None else state
    beta_mix = config.damping_factor

    def mix(state, x, x_fix, residual):
        state.prev_res.append(np.copy(residual))
        state.prev_x.append(np.copy(x))
        m = len(state.prev_res)

        flat_res = np.array([r.ravel() for r in state.prev_res])
        r = np.ones((m + 1, m + 1))
        r[m, m] = 0.0
        gram = np.dot(flat_res, np.transpose(flat_res))
        # Regularised, nearly parallel residuals make the system singular
        r[:-1, :-1] = gram + 1e-12 * np.max(np.diag(gram)) * np.eye(m)
        alpha = np.zeros(m + 1)
        alpha[m] = 1.0
        try:
            alpha = np.linalg.solve(r, alpha)
        except np.linalg.LinAlgError:
            alpha = np.linalg.lstsq(r, alpha, rcond=None)[0]

        x_next = np.zeros_like(x)
        for i in range(m):
            x_next += alpha[i] * (state.prev_x[i] + beta_mix * state.prev_res[i])

        if config.ensure_positive:
            x_next = abs(x_next)
        return x_next

    return _iterate(fixpoint, state, config, mix)


def initial_density(graph, guess, bulk, beta_vext):
    """
    Validate an initial guess, or generate one. Without a guess, the bulk densities are used, reduced by the Boltzmann
    factor where the external potential is repulsive.

    Args:
        graph (FunctionalGraph) : The functional
        guess (list[Profile], ndarray or None) : Initial guess
        bulk (BulkConditions) : Completed bulk conditions
        beta_vext (ndarray) : Reduced external potential
    Returns:
        ndarray : Densities, shape (n_species, *grid.shape)
    """
    shape = (graph.n_species, ) + graph.grid.shape
    if guess is None:
        rho_b = bulk.density.reshape((graph.n_species, ) + (1, ) * graph.grid.ndim)
        return rho_b * np.exp(- np.maximum(beta_vext, 0))

    if isinstance(guess, (list, tuple)):
        if len(guess) != graph.n_species:
            raise ConfigurationError(f'Got {len(guess)} initial profiles, but the functional has '
                                     f'{graph.n_species} species.')
        for p in guess:
            grid = getattr(p, 'grid', None)
            if (grid is not None) and (grid != graph.grid):
                raise ConfigurationError(f'Initial profile on {grid}, but the functional was built on {graph.grid}.')

    rho = np.array(guess, dtype=float)
    if rho.shape != shape:
        raise ConfigurationError(f'Initial densities with shape {rho.shape}, expected {shape}.')
    if not np.all(np.isfinite(rho)) or np.any(rho < 0):
        raise ConfigurationError('Initial densities must be finite and non-negative.')
    return rho


def solve(graph, initial_density_guess, bulk_conditions, external_potential=None, solver_config=None):
    """
    Compute the equilibrium density profiles.

    Args:
        graph (FunctionalGraph) : The functional (see Functional.build_graph)
        initial_density_guess (list[Profile], ndarray or None) : Initial guess, shape (n_species, *grid.shape)
        bulk_conditions (BulkConditions) : The bulk state in equilibrium with the profiles
        external_potential (callable, list[callable], ndarray or None) : The external potential,
                                                        see external_potential.external_potential_array
        solver_config (SolverConfig, optional) : Options, defaults to Picard iterations
    Returns:
        ProfileResult : The converged profiles, or the best effort if the iteration cap was reached.
    Raises:
        ConfigurationError : If the input is inconsistent. Raised before iterating.
        NumericalDivergence : If the iterations produce non-finite values.
    """
    config = SolverConfig() if solver_config is None else solver_config
    result = _solve(graph, initial_density_guess, bulk_conditions, external_potential, config)
    if result.converged:
        logger.info('Converged after %d iterations, residual %.3e', result.iterations, result.residual)
    else:
        logger.warning(result.message)
        warnings.warn(result.message, RuntimeWarning, stacklevel=2)
    return result


def _solve(graph, initial_density_guess, bulk_conditions, external_potential, config):
    bulk = bulk_conditions.complete(graph)
    beta_vext = external_potential_array(external_potential, graph.grid, graph.temperature, graph.n_species)
    rho0 = initial_density(graph, initial_density_guess, bulk, beta_vext)

    def fixpoint(rho):
        return euler_lagrange(graph, rho, bulk, beta_vext)

    logger.debug('Solving with %s, %s', config, bulk)
    driver = anderson if config.mixing == 'anderson' else picard
    state = driver(fixpoint, rho0, config=config)

    return ProfileResult.from_state(graph, state, bulk, beta_vext, config)


class SequentialSolver:
    """
    Run a sequence of solver stages, typically with increasingly aggressive mixing and decreasing tolerance, e.g.

        solver = SequentialSolver()
        solver.add_picard(1e-3, damping_factor=0.02)
        solver.add_picard(1e-5, damping_factor=0.1)
        solver.add_anderson(1e-9, damping_factor=0.05)
        result = solver(graph, None, bulk)

    If a stage diverges, it is restarted from the last finite density with half the damping factor, at most
    max_fallbacks times in total. A stage that runs out of iterations hands its profile to the next stage.
    """

    def __init__(self, stages=None, max_fallbacks=5):
        self.stages = [] if (stages is None) else list(stages)
        self.max_fallbacks = max_fallbacks

    def set_max_fallbacks(self, max_fallbacks):
        self.max_fallbacks = max_fallbacks

    def add_picard(self, tol, damping_factor=0.05, **kwargs):
        return self.add_stage(SolverConfig.Picard(tolerance=tol, damping_factor=damping_factor, **kwargs))

    def add_anderson(self, tol, damping_factor=0.05, **kwargs):
        return self.add_stage(SolverConfig.Anderson(tolerance=tol, damping_factor=damping_factor, **kwargs))

    def add_stage(self, config):
        if len(self.stages) > 0:
            if config.tolerance >= self.stages[-1].tolerance:
                warnings.warn(f'Adding solver with tol : {config.tolerance}. Previous tolerance is '
                              f'{self.stages[-1].tolerance}', RuntimeWarning, stacklevel=3)
        self.stages.append(config)
        return self

    def truncate_idx(self, idx):
        return SequentialSolver(self.stages[:idx], max_fallbacks=self.max_fallbacks)

    def truncate_tol(self, tol):
        """Utility
        The stages needed to reach the tolerance tol
        """
        for i, stage in enumerate(self.stages):
            if stage.tolerance <= tol:
                return self.truncate_idx(i + 1)
        return self.truncate_idx(len(self.stages))

    def __call__(self, graph, initial_density_guess, bulk_conditions, external_potential=None):
        """
        Run all stages, see `solve` for the arguments.

        Returns:
            ProfileResult : The result of the final stage
        """
        if len(self.stages) == 0:
            raise ConfigurationError('SequentialSolver has no stages.')

        guess = initial_density_guess
        n_fallbacks = 0
        n_iter = 0
        result = None
        for idx, stage in enumerate(self.stages):
            config = stage
            while True:
                try:
                    result = _solve(graph, guess, bulk_conditions, external_potential, config)
                    break
                except NumericalDivergence as err:
                    if n_fallbacks >= self.max_fallbacks:
                        logger.error('Stage %d diverged, and the maximum number of fallbacks (%d) is reached.',
                                     idx, self.max_fallbacks)
                        raise
                    n_fallbacks += 1
                    n_iter += err.iteration
                    config = config.replace(damping_factor=config.damping_factor / 2)
                    guess = err.snapshot
                    logger.warning('Stage %d diverged after %d iterations. Retrying from the last finite density with '
                                   'damping factor %.3e', idx, err.iteration, config.damping_factor)

            n_iter += result.iterations
            if not result.converged:
                logger.warning('Stage %d (%s) did not converge, residual is %.3e', idx, config, result.residual)
            guess = result.density

        logger.info('Sequential solver finished after %d iterations in total, residual %.3e', n_iter, result.residual)
        if not result.converged:
            warnings.warn(result.message, RuntimeWarning, stacklevel=2)
        return result


def sweep(graph, conditions, external_potential=None, solver_config=None, initial_density_guess=None,
          max_workers=None):
    """
    Solve for several bulk conditions concurrently. The graph is read-only, and is shared by all solves, each solve
    owns its own IterationState.

    Args:
        graph (FunctionalGraph) : The functional
        conditions (Iterable[BulkConditions]) : The bulk conditions to solve for
        external_potential : See `solve`
        solver_config (SolverConfig or SequentialSolver, optional) : Options used for every solve
        initial_density_guess : See `solve`, used for every solve
        max_workers (int, optional) : Number of threads
    Returns:
        list[ProfileResult] : In the order of `conditions`
    """
    conditions = list(conditions)
    if isinstance(solver_config, SequentialSolver):
        def run(bulk):
            return solver_config(graph, initial_density_guess, bulk, external_potential)
    else:
        def run(bulk):
            return solve(graph, initial_density_guess, bulk, external_potential, solver_config)

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [executor.submit(run, bulk) for bulk in conditions]
        return [f.result() for f in futures]
