import numpy as np
import pytest
from pytest import approx
from scfpack import Geometry, BulkConditions, SolverConfig, SequentialSolver, ConfigurationError
from scfpack.pore import Pore1D, Pore3D
from scfpack.hardsphere import WhiteBear
from scfpack.external_potential import HardWall, MAX_POTENTIAL

R = 0.5
CONFIG = SolverConfig.Picard(tolerance=1e-8, damping_factor=0.1, max_iterations=1000)


def slit(n_grid=128):
    return Pore1D([WhiteBear(R)], Geometry.PLANAR, 4.0, HardWall(R, is_pore=False), n_grid=n_grid)


def test_slit_pore_grid_and_potential():
    pore = slit()
    grid = pore.get_grid()
    assert grid.L == approx(2.0 + 2 * 2 * R)
    beta_V = pore.external_potential(grid, 1.0, 1)
    assert beta_V.shape == (1, 128)
    assert np.all(beta_V[0, grid.z < 2.0 - R] == 0)
    assert np.all(beta_V[0, grid.z > 2.0 - R] == MAX_POTENTIAL)


def test_slit_pore():
    pore = slit().initialize(BulkConditions(1.0, [0.3]))
    assert pore.profile is None and pore.grand_potential is None and pore.interfacial_tension is None
    pore.solve(CONFIG)
    assert pore.result.converged
    rho = pore.profile[0]
    z = pore.grid.z
    assert np.all(rho[z > 2.0 - R] < 1e-10)
    assert np.max(rho) > 0.3
    assert pore.interfacial_tension == approx(pore.grand_potential + pore.bulk.pressure * pore.grid.L)

    denser = pore.update_bulk(BulkConditions(1.0, [0.35]))
    assert denser.initial_density is pore.result.density
    solver = SequentialSolver().add_picard(1e-4, damping_factor=0.05).add_picard(1e-8, damping_factor=0.1,
                                                                                 max_iterations=1000)
    denser.solve(solver)
    assert denser.result.converged
    assert denser.result.number_of_particles()[0] > pore.result.number_of_particles()[0]


def test_resolve_starts_from_previous_profile():
    pore = slit().initialize(BulkConditions(1.0, [0.3]))
    pore.solve(CONFIG)
    assert pore.solve(CONFIG).result.iterations == 1


@pytest.mark.parametrize('geometry', [Geometry.SPHERICAL, Geometry.CYLINDRICAL])
def test_radial_pore_potential(geometry):
    pore = Pore1D([WhiteBear(R)], geometry, 3.0, HardWall(R, is_pore=False), n_grid=60)
    grid = pore.get_grid()
    assert grid.geometry == geometry
    assert grid.L == approx(3.0)
    beta_V = pore.external_potential(grid, 1.0, 1)
    assert np.all(beta_V[0, grid.z < 3.0 - R] == 0)
    assert np.all(beta_V[0, grid.z > 3.0 - R] == MAX_POTENTIAL)


def test_pore_configuration_errors():
    with pytest.raises(ConfigurationError):
        Pore1D([WhiteBear(R)], Geometry.CARTESIAN, 3.0, HardWall(R))
    with pytest.raises(ConfigurationError):
        Pore1D([WhiteBear(R)], Geometry.PLANAR, 0.0, HardWall(R))
    with pytest.raises(ConfigurationError):
        pore = Pore1D([WhiteBear(R)], Geometry.PLANAR, 3.0, [HardWall(R), HardWall(R)], n_grid=32)
        pore.external_potential(pore.get_grid(), 1.0, 1)


def solid(sigma_ff=(1.0, )):
    return Pore3D([WhiteBear(R)], (4.0, 4.0, 4.0), (8, 8, 8), [[2.0], [2.0], [2.0]], [1.0], [100.0],
                  list(sigma_ff), [100.0] * len(sigma_ff))


def test_solid_potential():
    pore = solid().initialize(BulkConditions(150.0, [0.1]))
    beta_V = pore.external_potential
    assert beta_V.shape == (1, 8, 8, 8)
    assert np.max(beta_V) == MAX_POTENTIAL
    assert np.min(beta_V) < 0
    # Symmetric around the site in the centre of the box
    assert beta_V[0, 0, 0, 0] == approx(beta_V[0, -1, -1, -1])
    assert pore.grid.N == 512

    with pytest.raises(ConfigurationError):
        solid(sigma_ff=(1.0, 1.2)).initialize(BulkConditions(150.0, [0.1]))


def test_solid_pore_solve():
    pore = solid().initialize(BulkConditions(150.0, [0.1]))
    assert pore.grid.geometry == Geometry.CARTESIAN
    pore.solve(CONFIG)
    assert pore.result.converged
    rho = pore.profile[0]
    assert rho.shape == (8, 8, 8)
    # The grid points closest to the site are inside the solid
    assert np.all(rho[3:5, 3:5, 3:5] < 1e-10)
    # Adsorption in the attractive well around the site
    assert np.max(rho) > 0.1
    assert pore.interfacial_tension == approx(pore.grand_potential + pore.bulk.pressure * pore.grid.volume())
