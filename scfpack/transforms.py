"""
This is the module that handles all the special treatment of functions depending on geometry, symmetry, etc.

Each Geometry has a Transform, built with `transform_for(grid)`. A Transform knows

    * Which wave numbers the weight functions must be evaluated on (`wavenumbers()`). The Convolver evaluates the
      kernels once on these, and hands the resulting dict (with the real space integral of the kernel under the key
      'integral') back to the transform when convolving.
    * How to compute the convolution of a scalar field with a scalar kernel (`convolve`), of a scalar field with a
      vector kernel (`convolve_vector`) and the contraction of a vector field with a vector kernel (`convolve_dot`).

All transforms compute the "true" convolution, (w * f)(r) = int f(r') w(r - r') dr'. For vector (odd) kernels the
adjoint of `convolve_vector` is `- convolve_dot`. Vector fields have shape (d, *grid.shape), with d = 1 for the one
dimensional geometries, and d = 3 for Cartesian grids.

The fields passed to a transform must have exactly the shape of the grid.

For the radial geometries, the value at the outer boundary is treated as the bulk value, extending to infinity. The
transforms are applied to the deviation from that value, and the bulk contribution is added analytically using the
real space integral of the kernel.

Transforms are not mutated after construction, and can be shared between threads.
"""
from collections import namedtuple
import numpy as np
from scipy.fft import dct, idct, dst, idst, rfftn, irfftn, fftfreq, rfftfreq
from scipy.linalg import lu_factor, lu_solve
from scipy.special import j0, j1, jn_zeros
from scfpack.grid import Geometry

RadialSpectrum = namedtuple('RadialSpectrum', ['coefficients', 'bulk'])


def _read_only(arr):
    arr = np.asarray(arr)
    arr.flags.writeable = False
    return arr


class Transform:
    """
    Parent class for the per-geometry transforms. See module docstring.
    """
    vector_dim = 1

    def __init__(self, grid, workers=None):
        self.grid = grid
        self.workers = workers

    def wavenumbers(self):
        """
        Returns:
            dict[str, ndarray] : The wave numbers (cycles per length) on which kernels must be evaluated.
        """
        raise NotImplementedError

    def forward(self, f):
        raise NotImplementedError

    def inverse(self, f_hat):
        raise NotImplementedError

    def convolve(self, w, f):
        raise NotImplementedError

    def convolve_vector(self, w, f):
        raise NotImplementedError

    def convolve_dot(self, w, v):
        raise NotImplementedError

    def vector_zeros(self):
        return np.zeros((self.vector_dim, ) + self.grid.shape)


class BulkTransform(Transform):
    """
    A grid with a single point has no spatial variation: The transform is the identity, convolving with a scalar
    kernel multiplies by the kernel integral, and all vector weighted densities vanish.
    """

    def __init__(self, grid, workers=None):
        super().__init__(grid, workers=workers)
        self.vector_dim = grid.geometry.dimension()

    def wavenumbers(self):
        return {}

    def forward(self, f):
        return np.array(f, dtype=float)

    def inverse(self, f_hat):
        return np.array(f_hat, dtype=float)

    def convolve(self, w, f):
        return np.asarray(f) * w['integral']

    def convolve_vector(self, w, f):
        return self.vector_zeros()

    def convolve_dot(self, w, v):
        return np.zeros(self.grid.shape)


class PlanarTransform(Transform):
    """
    Cosine (DCT-II) transform for even fields and sine (DST-II) transform for odd fields. The cosine series
    corresponds to reflective boundaries at both ends of the domain.

    The sine transform of an odd function has the same frequencies as the cosine transform, shifted by one index.
    Going between the two therefore requires rolling the transformed array, and dropping the frequency that has no
    counterpart.
    """

    def __init__(self, grid, workers=None):
        super().__init__(grid, workers=workers)
        N, L = grid.N, grid.L
        self.k_cos = _read_only(np.linspace(0.0, N - 1, N) / (2 * L))
        self.k_sin = _read_only(np.linspace(1.0, N, N) / (2 * L))

    def wavenumbers(self):
        return {'cos': self.k_cos, 'sin': self.k_sin}

    def forward(self, f):
        return dct(f, type=2, workers=self.workers)

    def inverse(self, f_hat):
        return idct(f_hat, type=2, workers=self.workers)

    def convolve(self, w, f):
        return idct(dct(f, type=2, workers=self.workers) * w['cos'], type=2, workers=self.workers)

    def convolve_vector(self, w, f):
        f_hat = np.roll(dct(f, type=2, workers=self.workers), -1)
        f_hat[-1] = 0
        return - idst(f_hat * w['sin'], type=2, workers=self.workers)[np.newaxis]

    def convolve_dot(self, w, v):
        v_hat = np.roll(dst(v[0], type=2, workers=self.workers), +1)
        v_hat[0] = 0
        return idct(v_hat * w['cos'], type=2, workers=self.workers)


class SphericalTransform(PlanarTransform):
    """
    For a spherically symmetric function, the 3D fourier transform reduces to a sine transform of r * f(r). The
    transforms are applied to the deviation from the value at the outer boundary.

    The vector convolutions mix the sine and cosine transforms. convolve_dot is the transpose of convolve_vector only up
    to discretisation error, of order dz^2 relative to the weighted densities (about 0.2 % at dz = 0.06 for hard
    spheres of unit diameter). Refine the grid if functional derivatives are needed to a tighter tolerance.
    """

    def __init__(self, grid, workers=None):
        super().__init__(grid, workers=workers)
        self.r = grid.z

    def forward(self, f):
        f = np.asarray(f)
        return RadialSpectrum(dst((f - f[-1]) * self.r, type=2, workers=self.workers), f[-1])

    def inverse(self, f_hat):
        return idst(f_hat.coefficients, type=2, workers=self.workers) / self.r + f_hat.bulk

    def convolve(self, w, f):
        f = np.asarray(f)
        f_inf = f[-1]
        delta_term = idst(dst((f - f_inf) * self.r, type=2, workers=self.workers) * w['sin'],
                          type=2, workers=self.workers) / self.r
        return delta_term + w['integral'] * f_inf

    def convolve_vector(self, w, f):
        r = self.r
        f = np.asarray(f)
        f_hat = dst((f - f[-1]) * r, type=2, workers=self.workers)

        odd_term = f_hat * w['sin'] / self.k_sin
        even_term = np.roll(f_hat / self.k_sin, +1) * w['cos'] * self.k_cos
        even_term[0] = 0

        # idst divided by 2 because of transform prefactor
        out = (1 / r) * idct(even_term, type=2, workers=self.workers) \
              - (1 / (np.pi * r**2)) * idst(odd_term, type=2, workers=self.workers) / 2
        return out[np.newaxis] # Bulk term vanishes for vector weights

    def convolve_dot(self, w, v):
        r = self.r
        v = np.asarray(v[0])
        v_delta = v - v[-1]

        cos_term = np.roll(dct(v_delta * r, type=2, workers=self.workers), -1) / self.k_sin
        cos_term[-1] = 0
        sin_term = dst(v_delta, type=2, workers=self.workers) / (np.pi * self.k_sin**2)

        return - (1 / r) * idst((cos_term - sin_term) * w['sin'] * self.k_sin, type=2, workers=self.workers)


class CylindricalTransform(Transform):
    """
    Fourier-Bessel (order 0 for scalar, order 1 for radial vector fields) collocation on the grid points.

    A field that is uniform along the cylinder axis is expanded as

        f(r) - f_inf = sum_m c_m J0(a_m r / L),

    where a_m are the zeros of J0, such that every basis function vanishes at the outer boundary. Each basis function
    is an eigenfunction of the convolution with a spherically symmetric kernel, with eigenvalue w(k_m), where
    k_m = a_m / (2 pi L). The vector convolution of the same basis function is - w(k_m) J1(a_m r / L), and the radial
    vector fields are expanded in J1(a_m r / L).

    The collocation matrices are LU-factorised once, such that forward and inverse transforms are exact inverses.
    """

    def __init__(self, grid, workers=None):
        super().__init__(grid, workers=workers)
        N, L = grid.N, grid.L
        self.r = grid.z
        self.zeros = _read_only(jn_zeros(0, N))
        self.k = _read_only(self.zeros / (2 * np.pi * L))
        x = np.outer(self.r, self.zeros) / L
        self.J0 = _read_only(j0(x))
        self.J1 = _read_only(j1(x))
        self._lu0 = lu_factor(self.J0)
        self._lu1 = lu_factor(self.J1)

    def wavenumbers(self):
        return {'bessel': self.k}

    def forward(self, f):
        f = np.asarray(f)
        return RadialSpectrum(lu_solve(self._lu0, f - f[-1]), f[-1])

    def inverse(self, f_hat):
        return self.J0 @ f_hat.coefficients + f_hat.bulk

    def convolve(self, w, f):
        f_hat = self.forward(f)
        return self.J0 @ (f_hat.coefficients * w['bessel']) + w['integral'] * f_hat.bulk

    def convolve_vector(self, w, f):
        f_hat = self.forward(f)
        return - (self.J1 @ (f_hat.coefficients * w['bessel']))[np.newaxis]

    def convolve_dot(self, w, v):
        v_hat = lu_solve(self._lu1, np.asarray(v[0]))
        return self.J0 @ (v_hat * w['bessel'])


class CartesianTransform(Transform):
    """
    Periodic, real valued FFT in three dimensions. The fourier transform of a vector kernel r_hat g(r) is
    i k_hat w(|k|), where w(|k|) is what the vector weight functions return.

    The components of k_hat are set to zero at the Nyquist frequency of each axis, such that the vector convolutions
    are real valued and exactly anti-symmetric.
    """
    vector_dim = 3

    def __init__(self, grid, workers=None):
        super().__init__(grid, workers=workers)
        self.axes = (-3, -2, -1)
        nx, ny, nz = grid.shape
        hx, hy, hz = grid.spacing
        k_axes = [fftfreq(nx, d=hx), fftfreq(ny, d=hy), rfftfreq(nz, d=hz)]
        k_vec = np.array(np.meshgrid(*k_axes, indexing='ij'))
        k_abs = np.sqrt(np.sum(k_vec**2, axis=0))

        k_hat = np.divide(k_vec, k_abs, out=np.zeros_like(k_vec), where=k_abs > 0)
        for ax, n in enumerate(grid.shape):
            if n % 2 == 0:
                nyquist = n // 2
                index = [slice(None)] * 3
                index[ax] = nyquist
                k_hat[(ax, ) + tuple(index)] = 0

        self.k_abs = _read_only(k_abs)
        self.k_hat = _read_only(k_hat)

    def wavenumbers(self):
        return {'k': self.k_abs}

    def forward(self, f):
        return rfftn(f, axes=self.axes, workers=self.workers)

    def inverse(self, f_hat):
        return irfftn(f_hat, s=self.grid.shape, axes=self.axes, workers=self.workers)

    def convolve(self, w, f):
        return self.inverse(self.forward(f) * w['k'])

    def convolve_vector(self, w, f):
        f_hat = self.forward(f) * w['k']
        return np.array([self.inverse(1j * k_hat * f_hat) for k_hat in self.k_hat])

    def convolve_dot(self, w, v):
        v_hat = sum(1j * k_hat * self.forward(vi) for k_hat, vi in zip(self.k_hat, v))
        return self.inverse(v_hat * w['k'])


def transform_for(grid, workers=None):
    """
    Get the transform to use for convolutions on a grid.

    Args:
        grid (Grid) : The grid
        workers (int, optional) : Number of workers used by scipy.fft
    Returns:
        Transform : The transform matching the geometry of the grid
    """
    if grid.N == 1:
        return BulkTransform(grid, workers=workers)
    elif grid.geometry == Geometry.PLANAR:
        return PlanarTransform(grid, workers=workers)
    elif grid.geometry == Geometry.SPHERICAL:
        return SphericalTransform(grid, workers=workers)
    elif grid.geometry == Geometry.CYLINDRICAL:
        return CylindricalTransform(grid, workers=workers)
    elif grid.geometry == Geometry.CARTESIAN:
        return CartesianTransform(grid, workers=workers)
    raise NotImplementedError(f'No transform implemented for geometry {grid.geometry}')
