"""
Mean field dispersion: A simple attractive contribution, where each species interacts with the local average density
of the other species, averaged over a sphere of diameter psi * sigma.

    phi = - beta sum_ij a_ij rho_i rho_bar_j,     a_ij = (16 pi / 9) eps_ij sigma_ij^3,

which is the integral of the attractive part of a Lennard-Jones potential. In bulk this is the van der Waals
attraction, f = - sum_ij a_ij rho_i rho_j.
"""
import numpy as np
from scfpack.Functional import FunctionalContribution, WeightedDensity
from scfpack.WeightFunction import LocalDensity, NormTheta
from scfpack.errors import ConfigurationError


class MeanFieldDispersion(FunctionalContribution):

    def __init__(self, sigma, eps_div_k, psi=1.3862, kij=None, name='dispersion'):
        """
        Args:
            sigma (Iterable[float]) : Size parameter of each species
            eps_div_k (Iterable[float]) : Energy parameter of each species [K]
            psi (float) : Range of the averaging, relative to sigma
            kij (2d array, optional) : Binary interaction parameters, eps_ij = (1 - k_ij) sqrt(eps_i eps_j)
            name (str) : Name of the contribution
        """
        self.sigma = np.atleast_1d(np.asarray(sigma, dtype=float))
        self.eps_div_k = np.atleast_1d(np.asarray(eps_div_k, dtype=float))
        if self.sigma.shape != self.eps_div_k.shape:
            raise ConfigurationError(f'Got {len(self.sigma)} sigma and {len(self.eps_div_k)} epsilon.')
        if any(self.sigma <= 0):
            raise ConfigurationError(f'sigma must be positive, got {self.sigma}')
        self.psi = psi
        self.name = name
        self.n_species = len(self.sigma)

        kij = np.zeros((self.n_species, self.n_species)) if kij is None else np.asarray(kij)
        sigma_ij = 0.5 * (self.sigma[:, None] + self.sigma[None, :])
        eps_ij = (1 - kij) * np.sqrt(self.eps_div_k[:, None] * self.eps_div_k[None, :])
        self.a = (16 * np.pi / 9) * eps_ij * sigma_ij**3

    def __repr__(self):
        return f'MeanFieldDispersion(sigma={list(self.sigma)}, eps_div_k={list(self.eps_div_k)}, psi={self.psi})'

    def get_characteristic_lengths(self):
        return self.sigma

    def weighted_densities(self, T):
        local = [WeightedDensity(f'rho_{i}', {i : LocalDensity()}) for i in range(self.n_species)]
        averaged = [WeightedDensity(f'rho_bar_{i}', {i : NormTheta(0.5 * self.psi * self.sigma[i])})
                    for i in range(self.n_species)]
        return local + averaged

    def helmholtz_energy_density(self, T, n):
        rho, rho_bar = n[:self.n_species], n[self.n_species:]
        phi = 0
        for i in range(self.n_species):
            for j in range(self.n_species):
                phi = phi - (self.a[i, j] / T) * rho[i] * rho_bar[j]
        return phi
