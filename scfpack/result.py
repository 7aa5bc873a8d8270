"""
The result of a solve: The density profiles, how the iterations went, and the thermodynamic quantities that follow
from the profiles. Everything is computed once, when the result is created, and the result is read-only afterwards.
"""
import numpy as np
from scipy.special import xlogy
from scfpack.profile import Profile
from scfpack.errors import ConvergenceFailure


class ProfileResult:
    """
    Read-only result of `solvers.solve`.

    Attributes:
        profile (list[Profile]) : Density profile of each species (read-only)
        density (ndarray) : The same densities, shape (n_species, *grid.shape) (read-only)
        status (SolverState) : The terminal state of the solver
        converged (bool) : Whether the tolerance was met
        iterations (int) : Number of iterations
        residual (float) : Final residual
        residual_history (tuple[float]) : Residual after each iteration
        tolerance (float) : The tolerance used
        solver (str) : The mixing scheme used
        message (str) : Description of how the solver exited
        failure (ConvergenceFailure or None) : Set if the solver did not converge
        bulk (BulkConditions) : The bulk state in equilibrium with the profiles
        grand_potential (float) : Reduced grand potential, beta Omega
        helmholtz_energy (dict[str, float]) : Reduced Helmholtz energy of each functional contribution, and the
                                                'ideal' and 'external' parts
    """

    def __init__(self, density, grid, status, iterations, residual_history, tolerance, solver, bulk,
                 grand_potential, helmholtz_energy, beta_vext):
        density = np.array(density, dtype=float)
        density.setflags(write=False)
        self.density = density
        self.grid = grid
        self.profile = [Profile(rho, grid) for rho in density]
        for p in self.profile:
            p.setflags(write=False)

        self.status = status
        self.converged = status.name == 'CONVERGED'
        self.iterations = iterations
        self.residual_history = tuple(residual_history)
        self.residual = self.residual_history[-1] if len(self.residual_history) > 0 else np.inf
        self.tolerance = tolerance
        self.solver = solver
        self.bulk = bulk
        self.grand_potential = grand_potential
        self.helmholtz_energy = dict(helmholtz_energy)
        self._beta_vext = beta_vext

        if self.converged:
            self.message = 'Finished with convergence.'
            self.failure = None
        else:
            if status.name == 'ABORTED':
                self.message = f'Aborted after {iterations} iterations, residual is {self.residual}.'
            else:
                self.message = f'Exited after reaching max number of iterations ({iterations}), ' \
                               f'residual is {self.residual} / tolerance {tolerance}.'
            self.failure = ConvergenceFailure(self.message, residual=self.residual, iterations=iterations,
                                              result=self)
        self._frozen = True

    def __setattr__(self, key, value):
        if getattr(self, '_frozen', False):
            raise AttributeError('ProfileResult is read-only.')
        super().__setattr__(key, value)

    @staticmethod
    def from_state(graph, state, bulk, beta_vext, config):
        """Construction
        Finalise a terminal IterationState.

        Args:
            graph (FunctionalGraph) : The functional
            state (IterationState) : The terminal state
            bulk (BulkConditions) : Completed bulk conditions
            beta_vext (ndarray) : The reduced external potential
            config (SolverConfig) : The solver options used
        """
        rho = state.density
        evaluation = graph.evaluate(rho)
        grid = graph.grid
        omega = graph.grid.integrate(graph.grand_potential_density(rho, bulk.chemical_potential, beta_vext=beta_vext,
                                                                   phi=evaluation.phi))
        energies = {name : float(grid.integrate(phi)) for name, phi in evaluation.contributions.items()}
        energies['ideal'] = float(grid.integrate(np.sum(xlogy(rho, rho) - rho, axis=0)))
        energies['external'] = float(grid.integrate(np.sum(rho * beta_vext, axis=0)))
        return ProfileResult(rho, grid, state.state, state.iteration, state.residual_history, config.tolerance,
                             config.mixing, bulk, float(omega), energies, beta_vext)

    @property
    def temperature(self):
        return self.bulk.temperature

    @property
    def excess_helmholtz_energy(self):
        """Profile Property
        The reduced excess Helmholtz energy, beta F_ex
        """
        return sum(v for k, v in self.helmholtz_energy.items() if k not in ('ideal', 'external'))

    def number_of_particles(self):
        """Profile Property
        The number of particles of each species in the domain (per area for planar, per length for cylindrical grids)

        Returns:
            ndarray : Number of particles of each species
        """
        return np.asarray(self.grid.integrate(self.density))

    def adsorption(self):
        r"""Profile Property
        The adsorption of each species, relative to the bulk density

        $$\Gamma_i = \int (\rho_i - \rho_{b, i}) dV$$

        Returns:
            ndarray : Adsorption of each species
        """
        rho_b = self.bulk.density.reshape((-1, ) + (1, ) * self.grid.ndim)
        return np.asarray(self.grid.integrate(self.density - rho_b))

    def surface_tension(self):
        r"""Profile Property
        The reduced surface (interfacial) tension, using the outer boundary of the domain as the dividing surface

        $$\beta \gamma = (\beta \Omega + \beta p V) / A$$

        Returns:
            float : beta gamma
        """
        V = self.grid.volume()
        A = self.grid.area(self.grid.domain_end)
        return (self.grand_potential + self.bulk.pressure * V) / A

    def raise_on_failure(self):
        """Utility
        Raise the ConvergenceFailure if the solver did not converge, otherwise return self.
        """
        if self.failure is not None:
            raise self.failure
        return self

    def to_records(self):
        """Utility
        The profiles as flat (species, grid point, density) records with grid metadata (see Profile.to_records), and
        a summary of the solve.
        """
        records = Profile.to_records(self.profile)
        records['status'] = self.status.name
        records['iterations'] = self.iterations
        records['residual'] = float(self.residual)
        records['grand_potential'] = self.grand_potential
        records['temperature'] = self.temperature
        records['bulk_density'] = self.bulk.density.tolist()
        return records

    def __repr__(self):
        r = 'ProfileResult\n'
        r += f'Solver     : {self.solver}\n'
        r += f'profile    : {len(self.profile)} Profiles with\n' \
             f'             Grid : N_points : {self.grid.N}, Geometry : {self.grid.geometry.name}\n'
        r += f'status     : {self.status.name}\n'
        r += f'residual   : {self.residual} / Tolerance : {self.tolerance}\n'
        r += f'iterations : {self.iterations}\n'
        r += f'message    : {self.message}'
        return r

    def __str__(self):
        return self.__repr__()
