"""
Hard sphere FMT functionals (Rosenfeld, White Bear and White Bear Mark II in "introduction to DFT").

The derivatives with respect to the weighted densities are computed by the dual numbers in dual.py, so only the
reduced Helmholtz energy densities are implemented here. The vector weighted densities have a leading component axis,
and vector products are contracted over that axis.

The White Bear functionals contain terms like (n3 + (1 - n3)^2 ln(1 - n3)) / n3^2, that lose all precision for small
n3 (e.g. inside a hard wall). For n3 below SERIES_LIMIT these are replaced by their Taylor expansions.
"""
import numpy as np
from collections.abc import Iterable
from scfpack.Functional import FunctionalContribution, WeightedDensity
from scfpack.WeightFunction import get_FMT_weights
from scfpack.errors import ConfigurationError

SERIES_LIMIT = 1e-4
FMT_NAMES = ('n0', 'n1', 'n2', 'n3', 'nv1', 'nv2')


def dot(a, b):
    """Contract the component axis of two vector weighted densities"""
    return np.sum(a * b, axis=0)


class FMT_Functional(FunctionalContribution):
    """
    Parent class for hard-sphere FMT functionals

    Args:
        R (float or Iterable[float]) : Hard sphere radius of each species. NOTE: RADIUS - NOT DIAMETER
        ms (float or Iterable[float], optional) : Number of segments of each species, defaults to one.
        name (str, optional) : Name of the contribution, defaults to 'hard sphere'
    """
    def __init__(self, R, ms=None, name='hard sphere'):
        if isinstance(R, Iterable):
            self._R = np.array(R, dtype=float)
        else:
            self._R = np.array([R], dtype=float)

        if ms is None:
            self.ms = np.ones_like(self._R)
        elif isinstance(ms, Iterable):
            self.ms = np.array(ms, dtype=float)
        else:
            self.ms = np.array([ms], dtype=float)

        if len(self.ms) != len(self._R):
            raise ConfigurationError(f'Got {len(self._R)} radii, but {len(self.ms)} segment numbers.')
        if any(self._R <= 0):
            raise ConfigurationError(f'Hard sphere radii must be positive, got {self._R}.')

        self.name = name
        self.n_species = len(self._R)

    def __repr__(self):
        return f'{type(self).__name__}(R={list(self._R)}, ms={list(self.ms)})'

    def get_R(self, T):
        """
        Use this to get R, because inheriting classes may override it to set a temperature dependent radius
        """
        return self._R

    def get_characteristic_lengths(self):
        return 2 * self._R

    def weighted_densities(self, T):
        weights = get_FMT_weights(self.get_R(T), self.ms)
        return [WeightedDensity.from_species_list(name, w) for name, w in zip(FMT_NAMES, weights)]

    def bulk_weighted_densities(self, rho, T):
        """Bulk Property
        The scalar weighted densities n0, n1, n2, n3 of a homogeneous fluid.
        """
        rho = np.atleast_1d(rho)
        weights = get_FMT_weights(self.get_R(T), self.ms)
        return [sum(rho[ci] * weights[wi][ci].real_integral() for ci in range(self.n_species)) for wi in range(4)]

    def packing_fraction(self, rho, T):
        """Bulk Property
        The packing fraction, n3
        """
        return self.bulk_weighted_densities(rho, T)[3]

    def pressure(self, rho, T):
        """Bulk Property
        Reduced pressure (beta p), Eq. 3.7 in "introduction to DFT"

        Args:
            rho (list[float]) : Density of each species
            T (float) : Temperature [K]
        Returns:
            float : beta p
        """
        n = self.bulk_weighted_densities(rho, T) + [np.zeros(1), np.zeros(1)]
        phi, dphidn = self.evaluate(T, n)
        p_res = - phi
        for i in range(4):
            p_res += dphidn[i] * n[i]
        return float(np.sum(rho) + p_res)


class Rosenfeld(FMT_Functional):

    def helmholtz_energy_density(self, T, n):
        n0, n1, n2, n3, nv1, nv2 = n
        phi1 = - n0 * np.log1p(- n3)
        phi2 = (n1 * n2 - dot(nv1, nv2)) / (1 - n3)
        phi3 = (n2 ** 3 - 3 * n2 * dot(nv2, nv2)) / (24 * np.pi * (1 - n3) ** 2)
        return phi1 + phi2 + phi3


class WhiteBear(FMT_Functional):

    @staticmethod
    def phi3_factor(n3):
        r"""
        $(n_3 + (1 - n_3)^2 \ln(1 - n_3)) / (36 \pi n_3^2 (1 - n_3)^2)$
        """
        small = n3 < SERIES_LIMIT
        n3_exact = np.where(small, 0.5, n3)
        exact = (n3_exact + (1 - n3_exact) ** 2 * np.log1p(- n3_exact)) / (n3_exact ** 2 * (1 - n3_exact) ** 2)
        series = 1.5 + (8 / 3) * n3 + 3.75 * n3 ** 2
        return np.where(small, series, exact) / (36 * np.pi)

    def helmholtz_energy_density(self, T, n):
        n0, n1, n2, n3, nv1, nv2 = n
        phi1 = - n0 * np.log1p(- n3)
        phi2 = (n1 * n2 - dot(nv1, nv2)) / (1 - n3)
        phi3 = (n2 ** 3 - 3 * n2 * dot(nv2, nv2)) * self.phi3_factor(n3)
        return phi1 + phi2 + phi3


class WhiteBearMarkII(FMT_Functional):

    @staticmethod
    def phi2_phi3(n3):
        small = n3 < SERIES_LIMIT
        x = np.where(small, 0.5, n3)
        phi2 = (2 * x - x ** 2 + 2 * (1 - x) * np.log1p(- x)) / x
        phi3 = (2 * x - 3 * x ** 2 + 2 * x ** 3 + 2 * (1 - x) ** 2 * np.log1p(- x)) / (x ** 2)
        phi2_series = n3 ** 2 / 3 + n3 ** 3 / 6 + n3 ** 4 / 10
        phi3_series = 4 * n3 / 3 - n3 ** 2 / 6 - n3 ** 3 / 15
        return np.where(small, phi2_series, phi2), np.where(small, phi3_series, phi3)

    def helmholtz_energy_density(self, T, n):
        n0, n1, n2, n3, nv1, nv2 = n
        phi2, phi3 = self.phi2_phi3(n3)
        return - n0 * np.log1p(- n3) + (n1 * n2 - dot(nv1, nv2)) * (1 + (1 / 3) * phi2) / (1 - n3) \
                + (n2**3 - 3 * n2 * dot(nv2, nv2)) * (1 - (1 / 3) * phi3) / (24 * np.pi * (1 - n3) ** 2)
