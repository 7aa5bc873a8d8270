"""
The weight functions are implemented as callable classes returning their 3D Fourier transform, with an __mul__
implemented such that for example

2 * Heaviside(R) # Returns a new weight function

See the Analytical class for more info.

Convention: The fourier transform is taken as  w(k) = int w(r) exp(-2 pi i k . r) dr, with k in cycles per length,
so the arguments of the spherical bessel functions are 2 pi k R. For vector valued (odd) weight functions, the
transform is  i k_hat w(k), and the callable returns the scalar w(k).
"""
import copy
import numpy as np
from scipy.special import spherical_jn


class Analytical:
    """
    Parent class for analytical functions
    Intended to be used for the fourier transformed weight functions
        The (fourier transform) of the unscaled weight function is implemented in the self.transform method,
        and called (multiplied by self.prefactor) from the __call__ method.

    Implements __mul__, such that multiplying an `Analytical` object with a float, returns a new `Analytical` object
    with the same kernel and a scaled prefactor. Because the kernel is unchanged, so is the `key`. This is what lets
    the Convolver compute the convolution with e.g. Delta(R), (1 / (4 pi R)) * Delta(R) and (1 / (4 pi R^2)) * Delta(R)
    only once.

    Also implements the `is_even()` and `is_odd()` methods, which return whether or not the function is even or odd,
    for heaviside and delta functions, this is as simple as checking whether the function is_vector_valued, in which case
    it is odd. These checks are used when computing convolutions to select the appropriate transforms.

    Analytical objects are immutable.

    Example:
        w = Heaviside(0.5)
        g = 2 * w
        g(k) == 2 * w(k) # True
        g.key == w.key # True
    """
    is_vector_valued = False
    __array_ufunc__ = None # numpy scalars defer to __rmul__

    def __init__(self, R, prefactor=1.0):
        self.R = float(R) if R is not None else None
        self.prefactor = prefactor
        self._frozen = True

    def __setattr__(self, key, value):
        if getattr(self, '_frozen', False):
            raise AttributeError('Weight functions are immutable. Multiply by a number to get a scaled copy.')
        super().__setattr__(key, value)

    def transform(self, k):
        raise NotImplementedError

    def base_integral(self):
        raise NotImplementedError

    @property
    def key(self):
        """
        Identifies the kernel, independent of prefactor. Two weight functions with the same key differ only by a
        constant factor.
        """
        return type(self).__name__, self.R

    def __call__(self, k):
        return self.prefactor * self.transform(k)

    def __mul__(self, prefactor): # Used to dynamically generate weight functions - See comment at top of class
        if not np.isscalar(prefactor):
            return NotImplemented
        other = copy.copy(self)
        object.__setattr__(other, 'prefactor', self.prefactor * prefactor)
        return other

    def __rmul__(self, prefactor):
        return self.__mul__(prefactor)

    def __truediv__(self, other):
        return self * (1 / other)

    def __neg__(self):
        return self * (-1)

    def base(self):
        """
        The weight function with the same kernel, and unit prefactor.
        """
        other = copy.copy(self)
        object.__setattr__(other, 'prefactor', 1.0)
        return other

    def is_odd(self):
        return self.is_vector_valued

    def is_even(self):
        return not self.is_odd()

    def real_integral(self):
        return self.prefactor * self.base_integral()

    def __repr__(self):
        return f'{self.prefactor} * {type(self).__name__}({self.R})'


class LocalDensity(Analytical):
    """
    Not an actual weight, but a placeholder to indicate we are using the local density. Treated specially in Convolver.py
    """
    def __init__(self, prefactor=1.0):
        super().__init__(None, prefactor)

    def __call__(self, k):
        raise AttributeError('The local density does not have a weight function! This is a placeholder!')

    def base_integral(self):
        return 1.0

    def __repr__(self):
        return f'{self.prefactor} * LocalDensity()'


class Heaviside(Analytical):
    r"""
    3D Fourier transform of $\theta(R - r)$
    """
    def transform(self, k):
        x = 2 * np.pi * np.asarray(k) * self.R
        return (4 / 3) * np.pi * self.R**3 * (spherical_jn(0, x) + spherical_jn(2, x))

    def base_integral(self):
        return 4 * np.pi * self.R**3 / 3


class NormTheta(Analytical):
    r"""
    3D Fourier transform of $((4/3) \pi R^3)^{-1} \theta(R - r)$
    """
    def transform(self, k):
        x = 2 * np.pi * np.asarray(k) * self.R
        return spherical_jn(0, x) + spherical_jn(2, x)

    def base_integral(self):
        return 1.0


class Delta(Analytical):
    r"""
    3D Fourier transform of $\delta(r - R)$
    """
    def transform(self, k):
        return 4 * np.pi * self.R**2 * spherical_jn(0, 2 * np.pi * np.asarray(k) * self.R)

    def base_integral(self):
        return 4 * np.pi * self.R**2


class DeltaVec(Analytical):
    r"""
    3D Fourier transform of $\hat{\vec{r}}\delta(r - R)$, where $\hat{\vec{r}} = \vec{r} / |\vec{r}|$ is the unit vector
    pointing away from the origin. The full transform is i k_hat times the value returned here.
    """
    is_vector_valued = True

    def transform(self, k):
        k = np.asarray(k)
        return - 2 * np.pi * k * 4.0 / 3.0 * np.pi * self.R ** 3 \
               * (spherical_jn(0, 2 * np.pi * k * self.R) + spherical_jn(2, 2 * np.pi * k * self.R))

    def base_integral(self):
        return 0.


def get_FMT_weights(R, ms=None, as_dict=False):
    """
    Return an array of `Analytical` weight functions, organised as

    w[<weight index>][<component index>], where
    w[0:4] are the scalar weight functions, and
    w[4:6] are the vector weight functions $\vec{w}_1$ and $\vec{w}_2$

    Args:
        R (Iterable[float]) : Hard sphere radius of each component
        ms (Iterable[float], optional) : Number of segments of each component, defaults to one.
        as_dict (bool) : Return a dict with keys 'w0', 'w1', 'w2', 'w3', 'wv1', 'wv2' instead.
    """
    R = np.atleast_1d(R)
    if ms is None:
        ms = np.ones_like(R)
    w = [[None for _ in range(len(R))] for _ in range(6)]
    for i in range(len(R)):
        w[0][i] = ms[i] * (1 / (4 * np.pi * R[i] ** 2)) * Delta(R[i])
        w[1][i] = ms[i] * (1 / (4 * np.pi * R[i])) * Delta(R[i])
        w[2][i] = ms[i] * Delta(R[i])
        w[3][i] = ms[i] * Heaviside(R[i])
        w[4][i] = ms[i] * (1 / (4 * np.pi * R[i])) * DeltaVec(R[i])
        w[5][i] = ms[i] * DeltaVec(R[i])

    if as_dict is False:
        return w
    return {'w0' : w[0], 'w1' : w[1], 'w2' : w[2], 'w3' : w[3], 'wv1' : w[4], 'wv2' : w[5]}
