"""
Adsorption in pores: Builds the grid and external potential of a pore, and solves for the density profiles of the
confined fluid in equilibrium with a bulk state.

    Pore1D : Slit (planar), cylindrical or spherical pore, where the wall potential depends on the distance to the wall.
    Pore3D : Periodic box with a solid made of Lennard-Jones sites.

Both are initialized with the bulk conditions to get a PoreProfile, which is solved to get the grand potential and
the interfacial tension of the confined fluid.
"""
import logging
from collections.abc import Iterable
import numpy as np
from scfpack.grid import Geometry, PlanarGrid, CylindricalGrid, SphericalGrid, CartesianGrid
from scfpack.Functional import build_graph
from scfpack.external_potential import LJ126Solid, MAX_POTENTIAL, CUTOFF_RADIUS, external_potential_array
from scfpack.solvers import SolverConfig, SequentialSolver, solve
from scfpack.errors import ConfigurationError

logger = logging.getLogger(__name__)

POTENTIAL_OFFSET = 2.0
DEFAULT_GRID_POINTS = 2048


def _characteristic_length(contributions):
    lengths = [c.get_characteristic_lengths() for c in contributions]
    lengths = [np.max(l) for l in lengths if l is not None]
    return max(lengths) if len(lengths) > 0 else 1.0


class Pore1D:
    """
    A pore where the external potential only depends on the distance to the wall.

    For planar geometry the pore is a slit of width pore_size, with identical walls on both sides. Only half of the pore
    is solved for: The grid starts in the centre of the pore (where the boundary is reflective), and extends
    POTENTIAL_OFFSET times the largest characteristic length (e.g. the hard sphere diameter) into the wall. For
    cylindrical and spherical geometry the grid extends from the centre to the wall, at r = pore_size.

    Args:
        contributions (list[FunctionalContribution]) : The Helmholtz energy functional
        geometry (Geometry) : Geometry of the pore
        pore_size (float) : Width of a slit pore, radius of a cylindrical or spherical pore
        potential (callable or list[callable]) : Wall potential [K] as a function of the distance from the wall,
                                                one shared or one for each species (see external_potential.py)
        n_grid (int, optional) : Number of grid points
        potential_cutoff (float, optional) : Maximum reduced potential
        workers (int, optional) : Passed on to the fft routines
    """

    def __init__(self, contributions, geometry, pore_size, potential, n_grid=DEFAULT_GRID_POINTS,
                 potential_cutoff=MAX_POTENTIAL, workers=None):
        geometry = Geometry(geometry)
        if geometry == Geometry.CARTESIAN:
            raise ConfigurationError('Use Pore3D for three dimensional pores.')
        if not (pore_size > 0):
            raise ConfigurationError(f'pore_size must be positive, got {pore_size}.')
        self.contributions = list(contributions)
        self.geometry = geometry
        self.pore_size = pore_size
        self.potential = potential
        self.n_grid = n_grid
        self.potential_cutoff = potential_cutoff
        self.workers = workers

    def get_grid(self):
        """Construction
        The grid spanning the pore
        """
        if self.geometry == Geometry.PLANAR:
            offset = POTENTIAL_OFFSET * _characteristic_length(self.contributions)
            return PlanarGrid(self.n_grid, 0.5 * self.pore_size + offset)
        elif self.geometry == Geometry.CYLINDRICAL:
            return CylindricalGrid(self.n_grid, self.pore_size)
        return SphericalGrid(self.n_grid, self.pore_size)

    @property
    def effective_pore_size(self):
        """
        The distance from the centre of the pore to the wall
        """
        return 0.5 * self.pore_size if self.geometry == Geometry.PLANAR else self.pore_size

    def external_potential(self, grid, T, n_species):
        """
        The reduced external potential in the pore. Outside the pore, and where the potential is larger, it is set to
        potential_cutoff.

        Args:
            grid (Grid) : The pore grid (see get_grid)
            T (float) : Temperature [K]
            n_species (int) : Number of species
        Returns:
            ndarray : beta V, shape (n_species, grid.N)
        """
        h = self.effective_pore_size
        potentials = self.potential if isinstance(self.potential, Iterable) else [self.potential] * n_species
        potentials = list(potentials)
        if len(potentials) != n_species:
            raise ConfigurationError(f'Got {len(potentials)} wall potentials, for {n_species} species.')

        z = grid.z
        beta_V = np.empty((n_species, grid.N))
        with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
            for i, v in enumerate(potentials):
                if self.geometry == Geometry.PLANAR:
                    beta_V[i] = (np.asarray(v(h + z)) + np.asarray(v(h - z))) / T
                else:
                    beta_V[i] = np.asarray(v(h - z)) / T
        beta_V[:, z > h] = self.potential_cutoff
        if np.any(np.isnan(beta_V)):
            raise ConfigurationError('The wall potential is NaN at some grid points.')
        return np.minimum(beta_V, self.potential_cutoff)

    def initialize(self, bulk, external_potential=None):
        """Construction
        Set up the pore for a given bulk state.

        Args:
            bulk (BulkConditions) : The bulk state in equilibrium with the pore
            external_potential (ndarray, optional) : Reduced external potential to use instead of the wall potential
        Returns:
            PoreProfile : The (unsolved) pore
        """
        grid = self.get_grid()
        graph = build_graph(self.contributions, grid, bulk.temperature, workers=self.workers)
        if external_potential is None:
            external_potential = self.external_potential(grid, bulk.temperature, graph.n_species)
        else:
            external_potential = external_potential_array(external_potential, grid, bulk.temperature,
                                                          graph.n_species, self.potential_cutoff)
        return PoreProfile(graph, bulk.complete(graph), external_potential)

    def __repr__(self):
        return f'Pore1D({self.geometry.name}, pore_size : {self.pore_size}, n_grid : {self.n_grid})'


class Pore3D:
    """
    A periodic box containing a solid, where each solid site interacts with the fluid through a Lennard-Jones 12-6
    potential (see external_potential.LJ126Solid).

    Args:
        contributions (list[FunctionalContribution]) : The Helmholtz energy functional
        system_size (Iterable[float]) : Box lengths
        n_grid (Iterable[int]) : Number of grid points along each axis
        coordinates (2d array) : Coordinates of the solid sites, shape (3, n_sites)
        sigma_ss (Iterable[float]) : Size parameter of each solid site
        eps_k_ss (Iterable[float]) : Energy parameter of each solid site [K]
        sigma_ff (Iterable[float]) : Size parameter of each fluid species
        eps_k_ff (Iterable[float]) : Energy parameter of each fluid species [K]
        m (Iterable[float], optional) : Number of segments of each fluid species
        cutoff_radius (float, optional) : Cutoff radius of the solid-fluid interactions
        potential_cutoff (float, optional) : Maximum reduced potential
        workers (int, optional) : Passed on to the fft routines
    """

    def __init__(self, contributions, system_size, n_grid, coordinates, sigma_ss, eps_k_ss, sigma_ff, eps_k_ff,
                 m=None, cutoff_radius=CUTOFF_RADIUS, potential_cutoff=MAX_POTENTIAL, workers=None):
        self.contributions = list(contributions)
        self.system_size = tuple(float(l) for l in system_size)
        self.n_grid = tuple(int(n) for n in n_grid)
        self.coordinates = np.asarray(coordinates, dtype=float)
        self.sigma_ss = np.atleast_1d(sigma_ss)
        self.eps_k_ss = np.atleast_1d(eps_k_ss)
        self.sigma_ff = np.atleast_1d(sigma_ff)
        self.eps_k_ff = np.atleast_1d(eps_k_ff)
        self.m = np.ones_like(self.sigma_ff, dtype=float) if m is None else np.atleast_1d(m)
        if not (len(self.sigma_ff) == len(self.eps_k_ff) == len(self.m)):
            raise ConfigurationError(f'Got {len(self.sigma_ff)} sigma_ff, {len(self.eps_k_ff)} eps_k_ff and '
                                     f'{len(self.m)} segment numbers.')
        self.cutoff_radius = cutoff_radius
        self.potential_cutoff = potential_cutoff
        self.workers = workers

    def get_grid(self):
        return CartesianGrid(self.n_grid, self.system_size)

    def solid_potentials(self):
        """
        The potential [K] of the solid on each fluid species
        """
        return [LJ126Solid(self.coordinates, self.sigma_ss, self.eps_k_ss, self.sigma_ff[i], self.eps_k_ff[i],
                           self.system_size, cutoff_radius=self.cutoff_radius, m=self.m[i])
                for i in range(len(self.sigma_ff))]

    def initialize(self, bulk, external_potential=None):
        """Construction
        Set up the pore for a given bulk state, see Pore1D.initialize
        """
        grid = self.get_grid()
        graph = build_graph(self.contributions, grid, bulk.temperature, workers=self.workers)
        if graph.n_species != len(self.sigma_ff):
            raise ConfigurationError(f'The functional has {graph.n_species} species, but got fluid parameters for '
                                     f'{len(self.sigma_ff)}.')
        if external_potential is None:
            external_potential = self.solid_potentials()
        external_potential = external_potential_array(external_potential, grid, bulk.temperature, graph.n_species,
                                                      self.potential_cutoff)
        return PoreProfile(graph, bulk.complete(graph), external_potential)

    def __repr__(self):
        return f'Pore3D(system_size : {self.system_size}, n_grid : {self.n_grid}, ' \
               f'sites : {self.coordinates.shape[-1]})'


class PoreProfile:
    """
    Density profiles of a confined fluid, along with the grand potential and interfacial tension once solved.

    Args:
        graph (FunctionalGraph) : The functional, on the pore grid
        bulk (BulkConditions) : Completed bulk conditions
        external_potential (ndarray) : The reduced external potential
    """

    def __init__(self, graph, bulk, external_potential, initial_density=None):
        self.graph = graph
        self.bulk = bulk
        self.external_potential = external_potential
        self.initial_density = initial_density
        self.result = None

    @property
    def grid(self):
        return self.graph.grid

    def solve(self, solver=None, initial_density=None):
        """
        Solve for the equilibrium profiles. If the pore has been solved before, the previous profiles are the initial
        guess.

        Args:
            solver (SolverConfig or SequentialSolver, optional) : The solver
            initial_density (list[Profile] or ndarray, optional) : Initial guess
        Returns:
            PoreProfile : self
        """
        if initial_density is None:
            initial_density = self.initial_density if self.result is None else self.result.density
        if isinstance(solver, SequentialSolver):
            self.result = solver(self.graph, initial_density, self.bulk, self.external_potential)
        else:
            config = SolverConfig() if solver is None else solver
            self.result = solve(self.graph, initial_density, self.bulk, self.external_potential, config)
        logger.info('Solved %s : beta Omega = %.6e', self.grid, self.grand_potential)
        return self

    def update_bulk(self, bulk):
        """
        Change the bulk state. The previous profiles are kept as the initial guess for the next solve.
        """
        initial_density = self.initial_density if self.result is None else self.result.density
        return PoreProfile(self.graph, bulk.complete(self.graph), self.external_potential, initial_density)

    @property
    def profile(self):
        return None if self.result is None else self.result.profile

    @property
    def grand_potential(self):
        """Profile Property
        Reduced grand potential, beta Omega, None if not solved
        """
        return None if self.result is None else self.result.grand_potential

    @property
    def interfacial_tension(self):
        r"""Profile Property
        Reduced interfacial tension (total for the pore, not per area), None if not solved

        $$\beta \Omega + \beta p V$$
        """
        if self.result is None:
            return None
        return self.result.grand_potential + self.bulk.pressure * self.grid.volume()

    def __repr__(self):
        state = 'unsolved' if self.result is None else self.result.status.name
        return f'PoreProfile({self.grid}, {state})'
