import numpy as np
import pytest
from pytest import approx
from concurrent.futures import ThreadPoolExecutor
from scfpack import PlanarGrid, SphericalGrid, ConfigurationError
from scfpack.Convolver import Convolver
from scfpack.WeightFunction import Heaviside, Delta, DeltaVec, NormTheta, LocalDensity, get_FMT_weights


def test_scaled_weights_share_key():
    w = Delta(0.5)
    assert (2 * w).key == w.key
    assert (np.float64(0.3) * w).key == w.key
    assert (w / 4).prefactor == approx(0.25)
    assert (-w).prefactor == approx(-1)
    assert Delta(0.5).key != Delta(0.6).key
    assert Delta(0.5).key != Heaviside(0.5).key


def test_weights_are_immutable():
    w = Heaviside(0.5)
    with pytest.raises(AttributeError):
        w.R = 1.0
    g = 2 * w
    assert w.prefactor == 1.0
    assert g(0.3) == approx(2 * w(0.3))


def test_transforms_at_zero_give_integrals():
    R = 0.7
    assert Heaviside(R).transform(0) == approx(4 * np.pi * R**3 / 3)
    assert Delta(R).transform(0) == approx(4 * np.pi * R**2)
    assert NormTheta(R).transform(0) == approx(1)
    assert DeltaVec(R).transform(0) == approx(0)
    assert DeltaVec(R).is_odd() and Heaviside(R).is_even()


def test_fmt_weights():
    R = np.array([0.5, 0.75])
    w = get_FMT_weights(R, ms=[1, 2])
    assert len(w) == 6 and len(w[0]) == 2
    assert w[0][0].real_integral() == approx(1)
    assert w[1][1].real_integral() == approx(2 * R[1])
    assert w[3][1].real_integral() == approx(2 * 4 * np.pi * R[1]**3 / 3)
    assert w[4][0].is_vector_valued and not w[3][0].is_vector_valued
    assert w[0][0].key == w[2][0].key # n0, n1 and n2 share one convolution
    assert set(get_FMT_weights(R, as_dict=True).keys()) == {'w0', 'w1', 'w2', 'w3', 'wv1', 'wv2'}


def test_kernel_cache_returns_identical_object():
    conv = Convolver(PlanarGrid(32, 2.0))
    k1 = conv.kernel(Delta(0.5))
    k2 = conv.kernel((1 / (4 * np.pi * 0.5**2)) * Delta(0.5))
    assert k1 is k2
    info = conv.cache_info()
    assert info.misses == 1 and info.hits == 1 and info.size == 1
    assert k1['integral'] == approx(np.pi)
    with pytest.raises(TypeError):
        k1['cos'] = 0
    with pytest.raises(ValueError):
        k1['cos'][0] = 0


def test_frozen_cache():
    conv = Convolver(PlanarGrid(32, 2.0))
    conv.precompute([Heaviside(0.5), LocalDensity()])
    conv.freeze()
    assert conv.frozen
    assert conv.kernel(2 * Heaviside(0.5)) is conv.kernel(Heaviside(0.5))
    with pytest.raises(ConfigurationError):
        conv.kernel(Delta(0.5))


def test_local_density():
    conv = Convolver(PlanarGrid(16, 2.0))
    rho = np.linspace(0, 1, 16)
    assert conv.convolve(LocalDensity(2.0), rho) == approx(2 * rho)
    assert conv.adjoint(LocalDensity(2.0), rho) == approx(2 * rho)
    with pytest.raises(TypeError):
        conv.kernel(LocalDensity())


def test_prefactor_is_applied_after_cache():
    grid = SphericalGrid(64, 4.0)
    conv = Convolver(grid)
    rho = 0.2 + 0.1 * np.exp(- grid.z**2)
    assert conv.convolve(3 * Delta(0.5), rho) == approx(3 * conv.convolve(Delta(0.5), rho))
    assert conv.cache_info().size == 1


def test_concurrent_kernel_lookup():
    conv = Convolver(PlanarGrid(256, 8.0))
    weights = [k * Heaviside(0.5) for k in range(1, 33)]
    with ThreadPoolExecutor(max_workers=8) as executor:
        kernels = list(executor.map(conv.kernel, weights))
    assert all(k is kernels[0] for k in kernels)
    assert conv.cache_info().misses == 1
