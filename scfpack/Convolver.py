"""
The Convolver computes weighted densities from density profiles, and maps derivatives with respect to weighted
densities back to derivatives with respect to the densities (the adjoint).

The fourier transformed weight functions are evaluated once per kernel (see `Analytical.key` in WeightFunction.py) on the
wave numbers of the grid's transform (transforms.py), and cached. Weight functions that only differ by a prefactor share
the same cached kernel.

The cache is filled either lazily (guarded by a lock) or eagerly with `precompute`. After `freeze()` the cache is
read-only, and asking for a kernel that was not precomputed is a ConfigurationError. A frozen Convolver can be shared by
several solvers running in parallel.
"""
import threading
from collections import namedtuple
from types import MappingProxyType
import numpy as np
from scfpack.transforms import transform_for
from scfpack.WeightFunction import LocalDensity
from scfpack.errors import ConfigurationError

CacheInfo = namedtuple('CacheInfo', ['hits', 'misses', 'size', 'frozen'])


class Convolver:

    def __init__(self, grid, workers=None):
        """
        Args:
            grid (Grid) : The grid that all densities passed to this Convolver live on
            workers (int, optional) : Number of workers used by scipy.fft
        """
        self.grid = grid
        self.transform = transform_for(grid, workers=workers)
        self._kernels = {}
        self._lock = threading.Lock()
        self._frozen = False
        self._hits = 0
        self._misses = 0

    def kernel(self, weight):
        """
        Get the fourier transformed kernel of a weight function, evaluated on the wave numbers of the transform.
        The returned mapping is read-only, and contains the key 'integral', which holds the real space integral of
        the kernel. Does not include the prefactor of the weight.

        Args:
            weight (Analytical) : The weight function
        Returns:
            Mapping[str, ndarray] : The kernel, identical for all weights with the same key
        """
        if isinstance(weight, LocalDensity):
            raise TypeError('The local density does not have a kernel.')
        key = weight.key
        with self._lock:
            kernel = self._kernels.get(key)
            if kernel is not None:
                self._hits += 1
                return kernel
            if self._frozen:
                raise ConfigurationError(f'The kernel {key} was not registered before the Convolver was frozen.')
            self._misses += 1
            kernel = self._evaluate(weight)
            self._kernels[key] = kernel
            return kernel

    def _evaluate(self, weight):
        values = {}
        for name, k in self.transform.wavenumbers().items():
            w = np.array(weight.transform(k), dtype=float)
            w.flags.writeable = False
            values[name] = w
        values['integral'] = weight.base_integral()
        return MappingProxyType(values)

    def precompute(self, weights):
        """
        Evaluate and cache the kernels of all weights. Local density placeholders are skipped.
        """
        for w in weights:
            if not isinstance(w, LocalDensity):
                self.kernel(w)

    def freeze(self):
        with self._lock:
            self._frozen = True

    @property
    def frozen(self):
        return self._frozen

    def keys(self):
        return tuple(self._kernels.keys())

    def cache_info(self):
        with self._lock:
            return CacheInfo(self._hits, self._misses, len(self._kernels), self._frozen)

    def convolve(self, weight, density):
        """
        Convolve a weight function with a density profile

        Args:
            weight (Analytical) : The weight function (See: WeightFunction.py)
            density (ndarray) : The density, with the same shape as the grid.
        Returns:
            ndarray : The weighted density, with shape (d, *grid.shape) for vector valued weights,
                        and the shape of the grid otherwise. NOTE: Does NOT return a Profile.
        """
        density = np.asarray(density)
        if isinstance(weight, LocalDensity):
            return weight.prefactor * density
        kernel = self.kernel(weight)
        if weight.is_vector_valued:
            return weight.prefactor * self.transform.convolve_vector(kernel, density)
        return weight.prefactor * self.transform.convolve(kernel, density)

    def adjoint(self, weight, field):
        """
        The transpose of `convolve`, used to compute the derivative of a functional with respect to the density from
        the derivative with respect to a weighted density:

            delta F / delta rho(r) = int (d phi / d n)(r') w(r' - r) dr'

        Scalar weights are even, so the adjoint is the convolution. Vector weights are odd, so the adjoint is the
        negated contraction of the vector field with the weight.

        Args:
            weight (Analytical) : The weight function
            field (ndarray) : Derivative with respect to the weighted density, shape (d, *grid.shape) for vector weights
        Returns:
            ndarray : Field with the shape of the grid
        """
        field = np.asarray(field)
        if isinstance(weight, LocalDensity):
            return weight.prefactor * field
        kernel = self.kernel(weight)
        if weight.is_vector_valued:
            return - weight.prefactor * self.transform.convolve_dot(kernel, field)
        return weight.prefactor * self.transform.convolve(kernel, field)
