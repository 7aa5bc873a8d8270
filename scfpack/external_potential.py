"""
The computations done elsewhere often use an external potential, which is a callable.

The classes here are intended to be used as templates to generate those callables. All potentials return V / k_B [K],
such that the reduced potential is beta V = V / T. For one dimensional grids, the callables are evaluated on the grid
points, for Cartesian grids they are called with the x, y and z coordinates of every grid point.

A single callable can be shared by all species, or one callable can be given for each species. See
`external_potential_array`, which converts the callables to the reduced potential used by the solvers.
"""
import abc
from collections.abc import Iterable
import numpy as np
from scfpack.errors import ConfigurationError

MAX_POTENTIAL = 50
CUTOFF_RADIUS = 7.0


class ExtPotential(metaclass=abc.ABCMeta):

    @abc.abstractmethod
    def __call__(self, *args, **kwargs): pass

    @abc.abstractmethod
    def __hash__(self): pass

    def __eq__(self, other):
        return isinstance(other, ExtPotential) and hash(self) == hash(other)


class ZeroPotential(ExtPotential):

    def __call__(self, z, *args):
        return np.zeros(np.shape(z))

    def __hash__(self):
        return hash('ZeroPotential')


class HardWall(ExtPotential):

    def __init__(self, position, is_pore=True):
        """
        is_pore determines whether the "wall" is at
            True => (position, inf) or
            False => (-inf, position)
        """
        self.is_pore = is_pore
        self.position = position

    def __call__(self, z):
        z = np.asarray(z)
        V = np.zeros(z.shape)
        if self.is_pore is True:
            V[z > self.position] = np.inf
        else:
            V[z < self.position] = np.inf
        return V

    def __hash__(self):
        return hash(('HardWall', self.position, self.is_pore))


class SlitPore(ExtPotential):

    def __init__(self, width, potential):
        self.Vext = potential
        self.width = width

    def __call__(self, z):
        return self.Vext(z) + self.Vext(self.width - np.asarray(z))

    def __hash__(self):
        return hash(('SoftSlitPore', self.width, hash(self.Vext)))


class LennardJones93(ExtPotential):
    """
    Integrated Lennard-Jones wall, eps * ((sigma / z)^9 - (sigma / z)^3)
    """

    def __init__(self, sigma, eps_div_k):
        self.sigma = sigma
        self.eps_div_k = eps_div_k

    def __call__(self, z):
        with np.errstate(divide='ignore', invalid='ignore'):
            sz = self.sigma / np.asarray(z, dtype=float)
            V = self.eps_div_k * (sz ** 9 - sz ** 3)
        return np.where(np.asarray(z) <= 0, np.inf, V)

    def __hash__(self):
        return hash(('LennardJones93', self.sigma, self.eps_div_k))


class Steele(ExtPotential):
    """
    Steele 10-4-3 potential of a graphite-like solid with interlayer spacing delta and solid density rho_s
    """

    def __init__(self, sigma, eps_div_k, delta, rho_s):
        self.sigma, self.eps_div_k, self.delta, self.rho_s = sigma, eps_div_k, delta, rho_s

    def __call__(self, z):
        z = np.asarray(z, dtype=float)
        with np.errstate(divide='ignore', invalid='ignore'):
            V = 2 * np.pi * self.rho_s * self.eps_div_k * self.sigma**2 * self.delta \
                * ((2 / 5) * (self.sigma / z)**10 - (self.sigma / z)**4
                   - self.sigma**4 / (3 * self.delta * (z + 0.61 * self.delta)**3))
        return np.where(z <= 0, np.inf, V)

    def __hash__(self):
        return hash(('Steele', self.sigma, self.eps_div_k, self.delta, self.rho_s))


class Mie(ExtPotential):

    def __init__(self, sigma, eps_div_k, lr, la):
        self.sigma = sigma
        self.eps_div_k = eps_div_k
        self.lr = lr
        self.la = la
        self.C = (lr / (lr - la)) * (lr / la) ** (la / (lr - la))

    def __call__(self, z):
        z = np.asarray(z, dtype=float)
        with np.errstate(divide='ignore', invalid='ignore'):
            V = self.C * self.eps_div_k * ((self.sigma / z)**self.lr - (self.sigma / z)**self.la)
        return np.where(z <= 0, np.inf, V)

    def __hash__(self):
        return hash(('Mie', self.sigma, self.eps_div_k, self.la, self.lr))


class ModifiedSquareWell(ExtPotential):

    def __init__(self, sigma, eps_div_k):
        self.sigma = sigma
        self.s = 0.12 * sigma
        self.eps_div_k = eps_div_k

    def __call__(self, z):
        z = np.asarray(z)
        V = np.zeros(z.shape)
        V[z < self.sigma - self.s] = np.inf
        V[(self.sigma - self.s <= z) & (z < self.sigma)] = 3 * self.eps_div_k
        V[(self.sigma <= z) & (z < self.sigma + self.s)] = - self.eps_div_k
        return V

    def __hash__(self):
        return hash(('ModifiedSquareWell', self.sigma, self.eps_div_k, self.s))


class ExpandedSoft(ExtPotential):
    """
    A hard core of radius R, surrounded by the soft potential, shifted outwards by R.
    """

    def __init__(self, R, soft_potential):
        self.R = R
        self.outer = soft_potential

    def __call__(self, z):
        z = np.asarray(z, dtype=float)
        V = np.full(z.shape, np.inf)
        outside = z > self.R
        V[outside] = self.outer(z[outside] - self.R)
        return V

    def __hash__(self):
        return hash(('ExpandedSoft', self.R, hash(self.outer)))


class LJ126Solid(ExtPotential):
    """
    The potential from a set of solid sites interacting with the fluid through a Lennard-Jones 12-6 potential, truncated
    at cutoff_radius. Distances are computed with the minimum image convention in a periodic box. Called with the
    x, y and z coordinates of the points to evaluate.

    Solid-fluid parameters are given by the Lorentz-Berthelot rules.

    Args:
        coordinates (2d array) : Site coordinates, shape (3, n_sites)
        sigma_ss (Iterable[float]) : Size parameter of each solid site
        eps_k_ss (Iterable[float]) : Energy parameter of each solid site [K]
        sigma_ff (float) : Size parameter of the fluid
        eps_k_ff (float) : Energy parameter of the fluid [K]
        system_size (Iterable[float]) : Box length along x, y and z
        cutoff_radius (float, optional) : Interactions beyond this distance are neglected
        m (float, optional) : Number of segments of the fluid molecule
    """

    def __init__(self, coordinates, sigma_ss, eps_k_ss, sigma_ff, eps_k_ff, system_size, cutoff_radius=CUTOFF_RADIUS,
                 m=1.0):
        self.coordinates = np.asarray(coordinates, dtype=float).reshape(3, -1)
        self.sigma_sf = 0.5 * (np.atleast_1d(sigma_ss) + sigma_ff)
        self.eps_sf = np.sqrt(np.atleast_1d(eps_k_ss) * eps_k_ff)
        if not (len(self.sigma_sf) == len(self.eps_sf) == self.coordinates.shape[1]):
            raise ConfigurationError(f'Got {self.coordinates.shape[1]} solid sites, but {len(self.sigma_sf)} sigma '
                                     f'and {len(self.eps_sf)} epsilon.')
        self.system_size = np.asarray(system_size, dtype=float)
        self.cutoff_radius = cutoff_radius
        self.m = m
        self._key = (self.coordinates.tobytes(), self.sigma_sf.tobytes(), self.eps_sf.tobytes(),
                     self.system_size.tobytes(), cutoff_radius, m)

    def __call__(self, x, y, z):
        point = [np.asarray(x, dtype=float), np.asarray(y, dtype=float), np.asarray(z, dtype=float)]
        V = np.zeros(np.broadcast(*point).shape)
        rc2 = self.cutoff_radius ** 2
        for alpha in range(self.coordinates.shape[1]):
            r2 = 0
            for d in range(3):
                r = self.coordinates[d, alpha] - point[d]
                r = r - self.system_size[d] * np.round(r / self.system_size[d])
                r2 = r2 + r**2
            with np.errstate(divide='ignore', invalid='ignore'):
                sr6 = (self.sigma_sf[alpha]**2 / r2) ** 3
                V_alpha = 4 * self.eps_sf[alpha] * (sr6**2 - sr6)
            V_alpha = np.where(r2 == 0, np.inf, V_alpha)
            V += np.where(r2 > rc2, 0, V_alpha)
        return self.m * V

    def __hash__(self):
        return hash(('LJ126Solid', ) + self._key)


def external_potential_array(vext, grid, T, n_species, max_potential=MAX_POTENTIAL):
    """
    Compute the reduced external potential, beta V, of every species on the grid, capped at max_potential.

    Args:
        vext (callable, list[callable], ndarray or None) : External potential [K]. Either one callable shared by all
                        species, one callable per species, or an array holding the reduced potential (beta V) with
                        shape (n_species, *grid.shape) or grid.shape. None gives no external potential.
        grid (Grid) : The grid
        T (float) : Temperature [K]
        n_species (int) : Number of species
        max_potential (float) : Maximum value of the reduced potential
    Returns:
        ndarray : beta V, shape (n_species, *grid.shape)
    """
    shape = (n_species, ) + grid.shape
    if vext is None:
        return np.zeros(shape)

    if isinstance(vext, np.ndarray):
        beta_V = np.array(vext, dtype=float)
        if beta_V.shape == grid.shape:
            beta_V = np.broadcast_to(beta_V, shape).copy()
        if beta_V.shape != shape:
            raise ConfigurationError(f'External potential array has shape {beta_V.shape}, expected {shape}.')
        if np.any(np.isnan(beta_V)):
            raise ConfigurationError('The external potential is NaN at some grid points.')
        return np.minimum(beta_V, max_potential)

    if not isinstance(vext, Iterable):
        vext = [vext for _ in range(n_species)]
    vext = list(vext)
    if len(vext) != n_species:
        raise ConfigurationError(f'Got {len(vext)} external potentials, for {n_species} species.')

    coordinates = grid.mesh()
    beta_V = np.empty(shape)
    for i, v in enumerate(vext):
        if v is None:
            beta_V[i] = 0
            continue
        if not callable(v):
            raise ConfigurationError(f'External potential {v} is not callable.')
        beta_V[i] = np.broadcast_to(np.asarray(v(*coordinates), dtype=float), grid.shape) / T

    with np.errstate(invalid='ignore'):
        beta_V = np.minimum(beta_V, max_potential)
    if np.any(np.isnan(beta_V)):
        raise ConfigurationError('The external potential is NaN at some grid points.')
    return beta_V
