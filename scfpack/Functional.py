"""
Functional contributions, and the graph that combines them into one excess Helmholtz energy functional.

A FunctionalContribution declares the weighted densities it needs (as WeightedDensity objects, each a sum over species
of weight functions convolved with the species density), and implements the reduced Helmholtz energy density
phi = beta * a_res as a function of those weighted densities. The derivatives of phi with respect to the weighted
densities are computed with dual numbers (see dual.py), so contributions never implement derivatives by hand.

The FunctionalGraph (built with `build_graph`) collects the weight functions of all contributions, and
    * Convolves each density with each distinct (species, kernel) exactly once per evaluation,
    * Hands every contribution the weighted densities it declared,
    * Sums the contributions to the total reduced Helmholtz energy density,
    * Routes the derivatives with respect to the weighted densities back through the adjoint convolution, once per
      distinct (species, kernel), to get the functional derivative with respect to each density.

All configuration problems (unknown species, vector/scalar mismatches, ...) are raised as ConfigurationError when the
graph is built. After construction the graph is read-only, and can be shared by solvers running in parallel.
"""
import abc
from collections import namedtuple
import numpy as np
from scipy.special import xlogy
from scfpack.Convolver import Convolver
from scfpack.WeightFunction import Analytical, LocalDensity
from scfpack.dual import partial_derivatives
from scfpack.errors import ConfigurationError

GraphEvaluation = namedtuple('GraphEvaluation', ['phi', 'contributions', 'dfdrho'])
BulkState = namedtuple('BulkState', ['density', 'phi', 'contributions', 'excess_chemical_potential', 'pressure'])


class WeightedDensity:
    """
    Declaration of a weighted density n = sum_i w_i * rho_i

    Args:
        name (str) : Name of the weighted density, used in error messages
        weights (dict[int, Analytical]) : The weight function of each species that contributes.
        vector (bool) : Whether the weighted density is a vector field.
    """

    def __init__(self, name, weights, vector=False):
        self.name = name
        self.weights = dict(weights)
        self.vector = vector

    @staticmethod
    def from_species_list(name, weights, vector=None):
        """Construction
        Create from a list of weights indexed by species (the format returned by get_FMT_weights).
        """
        if vector is None:
            vector = any(w.is_vector_valued for w in weights)
        return WeightedDensity(name, {i : w for i, w in enumerate(weights)}, vector=vector)

    def __repr__(self):
        return f'WeightedDensity({self.name}, {self.weights}, vector={self.vector})'


class FunctionalContribution(metaclass=abc.ABCMeta):
    """
    Parent class of all contributions to the excess Helmholtz energy functional.

    Inheriting classes must set `name` (unique within a graph), and implement `weighted_densities` and
    `helmholtz_energy_density`. The latter must only use numpy operations (including np.where), such that it can be
    evaluated with dual numbers.
    """
    name = None
    n_species = None

    @abc.abstractmethod
    def weighted_densities(self, T):
        """Weighted density
        The weighted densities used by this contribution, in the order `helmholtz_energy_density` expects them.

        Args:
            T (float) : Temperature [K]
        Returns:
            list[WeightedDensity] : The declarations
        """
        pass

    @abc.abstractmethod
    def helmholtz_energy_density(self, T, n):
        r"""Profile Property
        The reduced, residual Helmholtz energy density

        $$\phi = \frac{a^{res}}{k_B T}$$

        Args:
            T (float) : Temperature [K]
            n (list) : Weighted densities, in the order they are declared. Vector weighted densities have a leading
                        axis with one entry per component.
        Returns:
            ndarray : phi
        """
        pass

    def get_characteristic_lengths(self):
        """Utility
        Lengths that give an indication of the molecular sizes, used to generate grids and initial guesses.
        """
        return None

    def evaluate(self, T, n):
        """
        Evaluate the reduced Helmholtz energy density and its derivatives with respect to the weighted densities.

        Args:
            T (float) : Temperature [K]
            n (list[ndarray]) : The weighted densities
        Returns:
            ndarray : phi
            list[ndarray] : d phi / d n_alpha for each weighted density, shaped like n_alpha
        """
        vector = [wd.vector for wd in self.weighted_densities(T)]
        return partial_derivatives(lambda *args: self.helmholtz_energy_density(T, list(args)), n, vector=vector)

    def __repr__(self):
        return f'{type(self).__name__}({self.name})'


class FunctionalGraph:
    """
    The excess Helmholtz energy functional of a set of contributions on a given grid, at a given temperature.
    Use `build_graph` to construct.
    """

    def __init__(self, contributions, grid, temperature, n_species, convolver, nodes, kernels):
        self.contributions = tuple(contributions)
        self.grid = grid
        self.temperature = temperature
        self.n_species = n_species
        self.convolver = convolver
        self._nodes = nodes # contribution name -> [(WeightedDensity, [(species, key, prefactor), ...]), ...]
        self._kernels = kernels # (species, key) -> weight with unit prefactor
        self._frozen = True

    def __setattr__(self, key, value):
        if getattr(self, '_frozen', False):
            raise AttributeError('FunctionalGraph is read-only.')
        super().__setattr__(key, value)

    def required_kernels(self):
        """
        The distinct kernels that are convolved, as (species, kind, R). The local density is not a kernel.
        """
        return tuple((i, ) + key for (i, key) in self._kernels.keys() if key != LocalDensity().key)

    def characteristic_length(self):
        """Utility
        The largest characteristic length of any contribution (e.g. the largest hard sphere diameter)
        """
        lengths = [c.get_characteristic_lengths() for c in self.contributions]
        lengths = [np.max(l) for l in lengths if l is not None]
        return max(lengths) if len(lengths) > 0 else 1.0

    def _check_density(self, rho):
        rho = np.asarray(rho, dtype=float)
        if rho.shape != (self.n_species, ) + self.grid.shape:
            raise ConfigurationError(f'Expected densities with shape {(self.n_species, ) + self.grid.shape}, '
                                     f'got {rho.shape}.')
        return rho

    def _vector_shape(self, shape):
        return (self.convolver.transform.vector_dim, ) + shape

    def _combine(self, fields, shape):
        """
        Sum the convolved fields into the weighted densities of each contribution.
        """
        n = {}
        for c in self.contributions:
            n_c = []
            for wd, uses in self._nodes[c.name]:
                n_a = np.zeros(self._vector_shape(shape) if wd.vector else shape)
                for i, key, prefactor in uses:
                    n_a = n_a + prefactor * fields[(i, key)]
                n_c.append(n_a)
            n[c.name] = n_c
        return n

    def convolve(self, rho):
        """Weighted density
        Compute all weighted densities, with one convolution per distinct (species, kernel).

        Args:
            rho (ndarray) : Densities, shape (n_species, *grid.shape)
        Returns:
            dict[str, list[ndarray]] : The weighted densities of each contribution, in declaration order
        """
        rho = self._check_density(rho)
        fields = {(i, key) : self.convolver.convolve(w, rho[i]) for (i, key), w in self._kernels.items()}
        return self._combine(fields, self.grid.shape)

    def evaluate(self, rho):
        """Profile Property
        Evaluate the reduced Helmholtz energy density and the functional derivative of the excess Helmholtz energy.

        Args:
            rho (ndarray) : Densities, shape (n_species, *grid.shape)
        Returns:
            GraphEvaluation : phi (total), contributions (dict of phi per contribution),
                                dfdrho (beta delta F_ex / delta rho_i, shape (n_species, *grid.shape))
        """
        n = self.convolve(rho)
        shape = self.grid.shape
        phi = np.zeros(shape)
        per_contribution = {}
        derivative_fields = {}
        for c in self.contributions:
            phi_c, dphidn = c.evaluate(self.temperature, n[c.name])
            phi_c = np.broadcast_to(phi_c, shape)
            per_contribution[c.name] = phi_c
            phi = phi + phi_c
            for (wd, uses), dphidn_a in zip(self._nodes[c.name], dphidn):
                for i, key, prefactor in uses:
                    field = prefactor * dphidn_a
                    if (i, key) in derivative_fields:
                        derivative_fields[(i, key)] = derivative_fields[(i, key)] + field
                    else:
                        derivative_fields[(i, key)] = field

        dfdrho = np.zeros((self.n_species, ) + shape)
        for (i, key), field in derivative_fields.items():
            dfdrho[i] += self.convolver.adjoint(self._kernels[(i, key)], field)
        return GraphEvaluation(phi, per_contribution, dfdrho)

    def correlation(self, rho):
        """Profile Property
        Compute the one-body direct correlation function (sec. 4.2.3 in "introduction to DFT")

            c_i(r) = - beta delta F_ex / delta rho_i(r)

        Args:
            rho (ndarray) : Densities, shape (n_species, *grid.shape)
        Returns:
            ndarray : One body correlation function of each species, shape (n_species, *grid.shape)
        """
        return - self.evaluate(rho).dfdrho

    def bulk(self, density):
        """Bulk Property
        Evaluate the contributions for a homogeneous fluid. No convolutions are required: The weighted densities are
        the densities times the integrals of the weight functions, and the vector weighted densities vanish.

        Args:
            density (Iterable[float]) : Density of each species
        Returns:
            BulkState : phi (reduced Helmholtz energy density), contributions (phi per contribution),
                        excess_chemical_potential (beta mu_ex of each species), pressure (beta p)
        """
        density = np.asarray(density, dtype=float).reshape(-1)
        if len(density) != self.n_species:
            raise ConfigurationError(f'Expected {self.n_species} bulk densities, got {len(density)}.')

        fields = {(i, key) : density[i] * w.real_integral() for (i, key), w in self._kernels.items()}
        n = self._combine(fields, ())

        phi = 0.0
        per_contribution = {}
        beta_mu = np.zeros(self.n_species)
        for c in self.contributions:
            phi_c, dphidn = c.evaluate(self.temperature, n[c.name])
            phi_c = float(phi_c)
            per_contribution[c.name] = phi_c
            phi += phi_c
            for (wd, uses), dphidn_a in zip(self._nodes[c.name], dphidn):
                if wd.vector:
                    continue
                for i, key, prefactor in uses:
                    beta_mu[i] += float(dphidn_a) * prefactor * self._kernels[(i, key)].real_integral()

        pressure = float(np.sum(density * (1 + beta_mu)) - phi)
        return BulkState(density, phi, per_contribution, beta_mu, pressure)

    def helmholtz_energy(self, rho):
        """Profile Property
        The reduced excess Helmholtz energy, beta F_ex (per area for planar, per length for cylindrical geometry)

        Returns:
            float : The total
            dict[str, float] : The contribution of each functional contribution
        """
        ev = self.evaluate(rho)
        return float(self.grid.integrate(ev.phi)), {k : float(self.grid.integrate(v)) for k, v in ev.contributions.items()}

    def grand_potential_density(self, rho, beta_mu, beta_vext=None, phi=None):
        """Profile Property
        Compute the reduced grand potential density

            beta omega = phi + sum_i rho_i (ln rho_i - 1 + beta V_i - beta mu_i)

        Args:
            rho (ndarray) : Densities, shape (n_species, *grid.shape)
            beta_mu (Iterable[float]) : Reduced chemical potential of each species, ln(rho_b) + beta mu_ex
            beta_vext (ndarray, optional) : Reduced external potential, shape (n_species, *grid.shape)
            phi (ndarray, optional) : Reduced Helmholtz energy density, if already computed
        Returns:
            ndarray : The reduced grand potential density
        """
        rho = self._check_density(rho)
        if phi is None:
            phi = self.evaluate(rho).phi
        if beta_vext is None:
            beta_vext = np.zeros_like(rho)
        beta_mu = np.asarray(beta_mu, dtype=float).reshape((self.n_species, ) + (1, ) * self.grid.ndim)
        omega = phi + np.sum(xlogy(rho, rho) - rho + rho * (beta_vext - beta_mu), axis=0)
        return omega

    def grand_potential(self, rho, beta_mu, beta_vext=None):
        """Profile Property
        The reduced grand potential, beta Omega (per area for planar, per length for cylindrical geometry).
        """
        return float(self.grid.integrate(self.grand_potential_density(rho, beta_mu, beta_vext=beta_vext)))

    def __repr__(self):
        return f'FunctionalGraph({[c.name for c in self.contributions]}, {self.grid}, T : {self.temperature}, ' \
               f'kernels : {len(self.required_kernels())})'


def build_graph(contributions, grid, temperature, n_species=None, workers=None):
    """
    Build the FunctionalGraph of a set of contributions. Validates the contributions, registers every distinct
    (species, kernel) once, and precomputes and freezes the kernel cache.

    Args:
        contributions (list[FunctionalContribution]) : The contributions
        grid (Grid) : The grid
        temperature (float) : Temperature [K]
        n_species (int, optional) : Number of species, inferred from the contributions if not given.
        workers (int, optional) : Number of workers used by scipy.fft
    Returns:
        FunctionalGraph : The graph
    Raises:
        ConfigurationError : If the contributions can not be combined
    """
    contributions = list(contributions)
    if len(contributions) == 0:
        raise ConfigurationError('Can not build a graph without any contributions.')
    if not (temperature > 0):
        raise ConfigurationError(f'Temperature must be positive, got {temperature}.')

    names = [c.name for c in contributions]
    for c in contributions:
        if not isinstance(c, FunctionalContribution):
            raise ConfigurationError(f'{c} is not a FunctionalContribution.')
        if c.name is None:
            raise ConfigurationError(f'The contribution {type(c).__name__} has no name.')
        if names.count(c.name) > 1:
            raise ConfigurationError(f'Several contributions are named {c.name}.')

    declared_species = {c.n_species for c in contributions if c.n_species is not None}
    if n_species is not None:
        declared_species.add(n_species)
    if len(declared_species) > 1:
        raise ConfigurationError(f'Contributions have inconsistent numbers of species: '
                                 + ', '.join(f'{c.name} : {c.n_species}' for c in contributions)
                                 + ('' if n_species is None else f' (requested {n_species})'))

    declarations = {c.name : c.weighted_densities(temperature) for c in contributions}
    all_species = [i for wds in declarations.values() for wd in wds for i in wd.weights.keys()]
    if n_species is None:
        n_species = declared_species.pop() if len(declared_species) > 0 else max(all_species, default=-1) + 1

    nodes = {}
    kernels = {}
    for c in contributions:
        nodes[c.name] = []
        for wd in declarations[c.name]:
            if len(wd.weights) == 0:
                raise ConfigurationError(f'The weighted density {wd.name} of {c.name} has no weights.')
            uses = []
            for i, w in wd.weights.items():
                if not isinstance(i, (int, np.integer)) or not (0 <= i < n_species):
                    raise ConfigurationError(f'The weighted density {wd.name} of {c.name} uses species {i}, '
                                             f'but there are {n_species} species.')
                if not isinstance(w, Analytical):
                    raise ConfigurationError(f'The weight {w} of {wd.name} in {c.name} is not a weight function.')
                if w.is_vector_valued != wd.vector:
                    raise ConfigurationError(f'The weighted density {wd.name} of {c.name} is declared as '
                                             f'{"vector" if wd.vector else "scalar"} valued, but the weight for '
                                             f'species {i} is {"vector" if w.is_vector_valued else "scalar"} valued.')
                if (w.R is not None) and not (w.R > 0):
                    raise ConfigurationError(f'The weight {w} of {wd.name} in {c.name} has non-positive radius.')
                kernels.setdefault((int(i), w.key), w.base())
                uses.append((int(i), w.key, w.prefactor))
            nodes[c.name].append((wd, uses))

    convolver = Convolver(grid, workers=workers)
    convolver.precompute(kernels.values())
    convolver.freeze()
    return FunctionalGraph(contributions, grid, temperature, n_species, convolver, nodes, kernels)
