import numpy as np
import pytest
from pytest import approx
from scfpack import SphericalGrid, CylindricalGrid, CartesianGrid, BulkConditions, SolverConfig, build_graph, solve
from scfpack.hardsphere import WhiteBear, Rosenfeld
from scfpack.dispersion import MeanFieldDispersion
from scfpack.external_potential import HardWall, MAX_POTENTIAL

R = 0.5
RHO_B = 0.5
R_SOLUTE = 1.5
CONFIG = SolverConfig.Picard(tolerance=1e-8, damping_factor=0.15, max_iterations=1000)


@pytest.fixture(scope='module', params=[SphericalGrid, CylindricalGrid])
def radial_solute(request):
    """Hard sphere fluid around a hard sphere (spherical) or hard rod (cylindrical) solute in the origin"""
    grid = request.param(200, 10.0)
    graph = build_graph([WhiteBear(R)], grid, 1.0)
    result = solve(graph, None, BulkConditions(1.0, [RHO_B]), HardWall(R_SOLUTE + R, is_pore=False), CONFIG)
    return result


def test_radial_solute_converges(radial_solute):
    assert radial_solute.converged
    assert radial_solute.residual < 1e-8


def test_radial_solute_profile(radial_solute):
    r = radial_solute.grid.z
    rho = radial_solute.density[0]
    assert np.all(rho[r < R_SOLUTE + R] < 1e-10)
    assert np.max(rho) > RHO_B
    assert r[np.argmax(rho)] == approx(R_SOLUTE + R, abs=2 * radial_solute.grid.dz)
    assert rho[r > 8] == approx(RHO_B, rel=1e-2)


def test_radial_solute_thermodynamics(radial_solute):
    assert radial_solute.adsorption()[0] < 0
    assert radial_solute.number_of_particles()[0] == approx(radial_solute.profile[0].integrate())


@pytest.fixture(scope='module')
def periodic_solute():
    """Hard sphere solute in the centre of a periodic box"""
    grid = CartesianGrid(16, 8.0)
    x, y, z = grid.mesh()
    dist = np.sqrt((x - 4.0)**2 + (y - 4.0)**2 + (z - 4.0)**2)
    beta_V = np.where(dist < R_SOLUTE + R, MAX_POTENTIAL, 0.0)
    graph = build_graph([WhiteBear(R)], grid, 1.0)
    result = solve(graph, None, BulkConditions(1.0, [0.4]), beta_V, CONFIG)
    return result, dist


def test_periodic_solute(periodic_solute):
    result, dist = periodic_solute
    assert result.converged
    rho = result.density[0]
    assert rho.shape == (16, 16, 16)
    assert np.all(rho[dist < R_SOLUTE] < 1e-10)
    assert np.max(rho) > 0.4
    # Corners of the box are furthest away from the solute and its periodic images
    assert rho[dist > 6] == approx(0.4, rel=3e-2)
    # Mirror symmetry around the centre of the box
    assert rho == approx(rho[::-1, ::-1, ::-1], abs=1e-8)


@pytest.mark.parametrize('functional', [WhiteBear, Rosenfeld])
def test_spherical_functional_derivative(functional):
    grid = SphericalGrid(100, 5.0)
    # The radial transforms are exact only up to discretisation, so the tolerance is of order dz^2
    graph = build_graph([functional(R), MeanFieldDispersion([1.0], [0.5])], grid, 1.0)
    r = grid.z
    rho = (0.4 + 0.2 * np.exp(- 2 * (r - 2.0)**2))[np.newaxis]
    dfdrho = graph.evaluate(rho).dfdrho
    w = grid.integration_weights()
    h = 1e-5
    for j in (30, 45, 60):
        rho_p, rho_m = rho.copy(), rho.copy()
        rho_p[0, j] += h
        rho_m[0, j] -= h
        F_p, _ = graph.helmholtz_energy(rho_p)
        F_m, _ = graph.helmholtz_energy(rho_m)
        assert (F_p - F_m) / (2 * h * w[j]) == approx(dfdrho[0, j], rel=4 * grid.dz**2)
