import numpy as np
import pytest
from pytest import approx
from scfpack import Profile, PlanarGrid, SphericalGrid, CartesianGrid, ConfigurationError
from scfpack.profile import grid_to_dict, grid_from_dict
from scfpack.external_potential import HardWall
from scfpack.Convolver import Convolver
from scfpack.WeightFunction import get_FMT_weights
from tools import is_equal_arr


def test_profile_is_tied_to_grid():
    grid = PlanarGrid(10, 5.0)
    p = Profile(np.linspace(0, 1, 10), grid)
    assert p.grid == grid
    assert (2 * p).grid == grid
    assert p.is_even()
    with pytest.raises(ConfigurationError):
        Profile(np.ones(11), grid)
    v = Profile(np.ones((1, 10)), grid, is_vector_field=True)
    assert v.is_odd()


def test_interpolation():
    grid = PlanarGrid(10, 5.0)
    p = Profile(2 * grid.z + 1, grid)
    assert p(1.3) == approx(3.6)
    assert p([1.3, 2.0]) == approx([3.6, 5.0])
    assert p(-10) == approx(p[0])
    finer = p.on_grid(PlanarGrid(40, 5.0))
    assert finer(2.2) == approx(5.4)
    with pytest.raises(NotImplementedError):
        Profile(np.ones((2, 2, 2)), CartesianGrid(2, 1.0))(0.5)


def test_integrate_and_equimolar_surface():
    grid = SphericalGrid(200, 10.0)
    p = Profile(np.where(grid.z < 4, 0.8, 0.1), grid)
    assert p.integrate() == approx(0.8 * 4 * np.pi * 4**3 / 3 + 0.1 * 4 * np.pi * (10**3 - 4**3) / 3, rel=1e-10)
    assert p.equimolar_interface_position() == approx(4.0)


def test_json_round_trip(tmp_path):
    grid = PlanarGrid(64, 40.0, domain_start=1.0)
    profiles = Profile.tanh_profile(grid, [0.8, 0.1], [0.05, 0.3], centre=21.0)
    filename = tmp_path / 'profiles.json'
    Profile.save_list(profiles, str(filename))
    loaded = Profile.load_file(str(filename))
    assert len(loaded) == 2
    assert loaded[0].grid == grid
    assert is_equal_arr(loaded[1], profiles[1])


def test_records():
    grid = CartesianGrid((2, 3, 4), 2.0)
    rng = np.random.default_rng(1)
    profiles = [Profile(rng.uniform(0, 1, grid.shape), grid) for _ in range(2)]
    data = Profile.to_records(profiles)
    assert len(data['records']) == 2 * grid.N
    assert data['records'][grid.N + 5] == (1, 5, approx(profiles[1].ravel()[5]))
    restored = Profile.from_records(data)
    assert restored[1].grid == grid
    assert is_equal_arr(restored[0], profiles[0])

    data['records'] = data['records'][:-1]
    with pytest.raises(ConfigurationError):
        Profile.from_records(data)


@pytest.mark.parametrize('grid', [PlanarGrid(8, 2.0, domain_start=-1.0), SphericalGrid(8, 3.0),
                                  CartesianGrid((2, 3, 4), (1.0, 2.0, 3.0))])
def test_grid_dict(grid):
    assert grid_from_dict(grid_to_dict(grid)) == grid


def test_initial_profiles():
    grid = PlanarGrid(100, 10.0)
    step = Profile.step_function(grid, 0.7, 0.1)
    assert step[0] == 0.7 and step[-1] == 0.1
    box = CartesianGrid((4, 2, 2), 1.0)
    step = Profile.step_function(box, 0.7, 0.1)
    assert step.shape == box.shape
    values = np.asarray(step)
    assert np.all(values[:2] == 0.7) and np.all(values[2:] == 0.1)

    zeros = Profile.zeros(grid, nprofiles=2)
    assert len(zeros) == 2 and np.all(zeros[1] == 0)
    assert Profile.zeros_like(zeros)[0].grid == grid

    with pytest.warns(RuntimeWarning):
        Profile.tanh_profile(grid, [0.7], [0.1], width_factors=[10.0])


def test_from_potential():
    grid = PlanarGrid(100, 10.0)
    wall = HardWall(1.0, is_pore=False)
    rho = Profile.from_potential([0.5, 0.2], 1.0, grid, wall)
    assert rho[0][grid.z > 1] == approx(0.5)
    assert np.all(rho[1][grid.z < 1] < 1e-20)

    w3 = get_FMT_weights([0.5, 0.5])[3]
    capped = Profile.from_potential([2.0, 2.0], 1.0, grid, wall, w3=w3, convolver=Convolver(grid), max_packing=0.6)
    packing = sum(capped[i] * w3[i].real_integral() for i in range(2))
    assert np.max(packing) == approx(0.6)
    with pytest.raises(ConfigurationError):
        Profile.from_potential([0.5], 1.0, grid, wall, w3=w3[:1])
