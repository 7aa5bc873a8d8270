import numpy as np
import pytest
from pytest import approx
from scfpack import PlanarGrid, SphericalGrid, CartesianGrid, build_graph, FunctionalContribution, WeightedDensity
from scfpack import ConfigurationError
from scfpack.hardsphere import Rosenfeld, WhiteBear, WhiteBearMarkII
from scfpack.dispersion import MeanFieldDispersion
from scfpack.WeightFunction import Heaviside, DeltaVec
from tools import smooth_field, carnahan_starling_pressure, carnahan_starling_mu_ex, percus_yevick_pressure

R = 0.5


class Packing(FunctionalContribution):
    """Test contribution, phi = n3^2, with a configurable declaration"""

    def __init__(self, name='packing', species=(0, ), vector=False, weight=None, n_species=None):
        self.name = name
        self.n_species = n_species
        self.species = species
        self.vector = vector
        self.weight = Heaviside(R) if weight is None else weight

    def weighted_densities(self, T):
        return [WeightedDensity('n3', {i : self.weight for i in self.species}, vector=self.vector)]

    def helmholtz_energy_density(self, T, n):
        return n[0]**2


def test_shared_kernels_are_convolved_once():
    grid = PlanarGrid(64, 5.0)
    graph = build_graph([WhiteBear(R)], grid, 1.0)
    assert len(graph.required_kernels()) == 3 # Delta, Heaviside and DeltaVec
    assert graph.convolver.frozen

    graph = build_graph([WhiteBear(R), MeanFieldDispersion([1.0], [1.0])], grid, 1.0)
    assert len(graph.required_kernels()) == 4

    graph = build_graph([WhiteBear(R), Packing()], grid, 1.0)
    assert len(graph.required_kernels()) == 3
    assert graph.convolver.cache_info().size == 3


def test_two_species_kernels():
    graph = build_graph([WhiteBear([R, 0.75])], PlanarGrid(64, 5.0), 1.0)
    assert graph.n_species == 2
    assert len(graph.required_kernels()) == 6
    with pytest.raises(AttributeError):
        graph.temperature = 2.0


@pytest.mark.parametrize('contributions, kwargs', [([], {}),
                                                   ([Packing(), Packing()], {}),
                                                   ([Packing(species=(0, 2))], {'n_species' : 2}),
                                                   ([WhiteBear([R, R]), Packing(n_species=1)], {}),
                                                   ([WhiteBear(R)], {'n_species' : 2}),
                                                   ([Packing(vector=True)], {}),
                                                   ([Packing(weight=DeltaVec(R))], {}),
                                                   ([Packing(weight=Heaviside(-1.0))], {}),
                                                   ([Packing(name=None)], {}),
                                                   ([WhiteBear(R)], {'temperature' : 0}),
                                                   ([WhiteBear(R)], {'temperature' : -1})])
def test_configuration_errors(contributions, kwargs):
    T = kwargs.pop('temperature', 1.0)
    with pytest.raises(ConfigurationError):
        build_graph(contributions, PlanarGrid(16, 2.0), T, **kwargs)


def test_density_shape_is_checked():
    graph = build_graph([WhiteBear(R)], PlanarGrid(16, 2.0), 1.0)
    with pytest.raises(ConfigurationError):
        graph.evaluate(np.ones(16))
    with pytest.raises(ConfigurationError):
        graph.bulk([0.1, 0.2])


@pytest.mark.parametrize('rho', [0.1, 0.4, 0.8])
def test_white_bear_bulk_is_carnahan_starling(rho):
    graph = build_graph([WhiteBear(R)], PlanarGrid(8, 2.0), 1.0)
    eta = rho * 4 * np.pi * R**3 / 3
    bulk = graph.bulk([rho])
    assert bulk.pressure == approx(carnahan_starling_pressure(rho, eta))
    assert bulk.excess_chemical_potential[0] == approx(carnahan_starling_mu_ex(eta))
    assert WhiteBear(R).pressure([rho], 1.0) == approx(bulk.pressure)


@pytest.mark.parametrize('functional', [Rosenfeld, WhiteBear, WhiteBearMarkII])
def test_pressure_of_chains(functional):
    fmt = functional([R, 0.4], ms=[2.0, 3.0])
    graph = build_graph([fmt], PlanarGrid(8, 2.0), 1.0)
    rho = [0.1, 0.05]
    assert fmt.pressure(rho, 1.0) == approx(graph.bulk(rho).pressure)


@pytest.mark.parametrize('rho', [0.1, 0.4, 0.8])
def test_rosenfeld_bulk_is_percus_yevick(rho):
    graph = build_graph([Rosenfeld(R)], PlanarGrid(8, 2.0), 1.0)
    eta = rho * 4 * np.pi * R**3 / 3
    assert graph.bulk([rho]).pressure == approx(percus_yevick_pressure(rho, eta))


def test_dispersion_bulk():
    T = 2.0
    disp = MeanFieldDispersion([1.0], [1.5])
    graph = build_graph([disp], PlanarGrid(8, 2.0), T)
    rho = 0.3
    bulk = graph.bulk([rho])
    a = disp.a[0, 0]
    assert a == approx(16 * np.pi * 1.5 / 9)
    assert bulk.phi == approx(- a * rho**2 / T)
    assert bulk.excess_chemical_potential[0] == approx(- 2 * a * rho / T)
    assert bulk.pressure == approx(rho - a * rho**2 / T)


@pytest.mark.parametrize('grid', [PlanarGrid(64, 6.0), SphericalGrid(64, 6.0), CartesianGrid((8, 8, 8), 4.0)])
def test_uniform_density_gives_bulk_chemical_potential(grid):
    graph = build_graph([WhiteBearMarkII(R), MeanFieldDispersion([1.0], [1.0])], grid, 1.5)
    rho = np.full((1, ) + grid.shape, 0.6)
    ev = graph.evaluate(rho)
    bulk = graph.bulk([0.6])
    assert ev.dfdrho == approx(bulk.excess_chemical_potential[0], rel=1e-8)
    assert ev.phi == approx(bulk.phi, rel=1e-8)
    assert set(ev.contributions.keys()) == {'hard sphere', 'dispersion'}


@pytest.mark.parametrize('functional', [WhiteBear, Rosenfeld])
def test_functional_derivative_matches_finite_difference(functional):
    grid = PlanarGrid(40, 4.0)
    graph = build_graph([functional(R), MeanFieldDispersion([1.0], [0.5])], grid, 1.0)
    rho = smooth_field(grid, seed=4, mean=0.5, amplitude=0.2)[np.newaxis]
    dfdrho = graph.evaluate(rho).dfdrho
    h = 1e-5
    for j in (0, 7, 20, 33):
        rho_p, rho_m = rho.copy(), rho.copy()
        rho_p[0, j] += h
        rho_m[0, j] -= h
        F_p, _ = graph.helmholtz_energy(rho_p)
        F_m, _ = graph.helmholtz_energy(rho_m)
        assert (F_p - F_m) / (2 * h * grid.dz) == approx(dfdrho[0, j], rel=1e-5, abs=1e-8)


def test_helmholtz_energy_contributions_sum_to_total():
    grid = SphericalGrid(50, 5.0)
    graph = build_graph([WhiteBear(R), MeanFieldDispersion([1.0], [0.5])], grid, 1.0)
    F, contributions = graph.helmholtz_energy(smooth_field(grid, seed=5)[np.newaxis])
    assert F == approx(sum(contributions.values()))
    assert contributions['dispersion'] < 0 < contributions['hard sphere']


def test_grand_potential_of_bulk_is_minus_pressure():
    grid = PlanarGrid(32, 10.0)
    graph = build_graph([WhiteBear(R)], grid, 1.0)
    rho_b = 0.5
    bulk = graph.bulk([rho_b])
    beta_mu = np.log(rho_b) + bulk.excess_chemical_potential
    rho = np.full((1, ) + grid.shape, rho_b)
    assert graph.grand_potential(rho, beta_mu) == approx(- bulk.pressure * grid.L)


def test_correlation_is_minus_derivative():
    grid = PlanarGrid(32, 4.0)
    graph = build_graph([WhiteBear(R)], grid, 1.0)
    rho = smooth_field(grid)[np.newaxis]
    assert graph.correlation(rho) == approx(- graph.evaluate(rho).dfdrho)
