"""
Here we find one of the fundamental structures in the DFT-code: The Grid.

The Grid is "Dumb" in the sense that it does not perform calculations. It only holds information about the Geometry
(symmetry) of the domain, as well as the real-space gridpoints of the discretisation. The matching fourier-space grids
live in the transforms (see transforms.py), because they depend on which transform is used.

HOWEVER: The *whole point* of the Grid structure is that other code can be Geometry and domain-size agnostic.
        That means: If you find yourself writing
            if grid.geometry == Geometry.PLANAR:
                ...
            elif grid.geometry == Geometry.SPHERICAL:
                ...
        You are likely doing something wrong. Whatever you are trying to do can probably be handled by calling a method
        in the grid, that does whatever you want to do, and correctly handles the cases for different geometries.
        A nice example is integrating a profile. We do this using Grid.integrate() (or the cell volumes from
        Grid.integration_weights()), not by checking the geometry and treating the different cases every time.

A Grid is immutable: Methods that "move" a grid return a new Grid. This is what allows a Grid to be used as a cache key,
and to be shared between solvers running in different threads.
"""
from enum import IntEnum
import numpy as np
from scipy.fft import next_fast_len
from scfpack.errors import ConfigurationError


class Geometry(IntEnum):
    PLANAR = 1
    CYLINDRICAL = 2
    SPHERICAL = 3
    CARTESIAN = 4
    POLAR = 2 # Alias for CYLINDRICAL

    def is_radial(self):
        return self in (Geometry.CYLINDRICAL, Geometry.SPHERICAL)

    def dimension(self):
        """Number of axes of the discretisation"""
        return 3 if self == Geometry.CARTESIAN else 1


class Grid:
    """
    Spacial discretisation, determined by a length (domain_size), number of gridpoints, and geometry.
    Gridpoints are cell-centred, such that z[i] = domain_start + (i + 1/2) * dz.

    For Geometry.CARTESIAN the number of gridpoints, domain size and domain start are given per axis (x, y, z),
    a single number is used for all axes.
    """

    def __init__(self, n_grid, geometry, domain_size, domain_start=0):
        geometry = Geometry(geometry)
        ndim = geometry.dimension()
        n_grid = self._per_axis(n_grid, ndim, 'n_grid')
        domain_size = self._per_axis(domain_size, ndim, 'domain_size')
        domain_start = self._per_axis(domain_start, ndim, 'domain_start')

        if any(int(n) != n or n < 1 for n in n_grid):
            raise ConfigurationError(f'Number of gridpoints must be positive integers, got {n_grid}.')
        if any(not (L > 0) for L in domain_size):
            raise ConfigurationError(f'Domain size must be positive, got {domain_size}.')
        if geometry.is_radial() and domain_start[0] != 0:
            raise ConfigurationError(f'Grids with {geometry.name} geometry must start at r = 0, '
                                     f'got domain_start = {domain_start[0]}.')

        self.geometry = geometry
        self.shape = tuple(int(n) for n in n_grid)
        self.N = int(np.prod(self.shape))
        self.lengths = tuple(float(L) for L in domain_size)
        self.starts = tuple(float(s) for s in domain_start)
        self.spacing = tuple(L / n for L, n in zip(self.lengths, self.shape))

        axes = []
        for n, L, s, h in zip(self.shape, self.lengths, self.starts, self.spacing):
            ax = np.linspace(s + h / 2, s + L - h / 2, n)
            ax.flags.writeable = False
            axes.append(ax)
        self.axes = tuple(axes)

        # 1D conveniences, for CARTESIAN these refer to the first axis
        self.L = self.lengths[0]
        self.domain_start = self.starts[0]
        self.domain_end = self.domain_start + self.L
        self.dz = self.spacing[0]
        self.z = self.axes[0]

        self._frozen = True

    @staticmethod
    def _per_axis(value, ndim, name):
        if np.ndim(value) == 0:
            return (value, ) * ndim
        value = tuple(value)
        if len(value) != ndim:
            raise ConfigurationError(f'{name} must have {ndim} entries, got {len(value)}.')
        return value

    def __setattr__(self, key, value):
        if getattr(self, '_frozen', False):
            raise AttributeError(f'Grid is immutable, can not set attribute {key}. Use Grid.shifted or '
                                 f'Grid.centered_at to get a moved Grid.')
        super().__setattr__(key, value)

    @property
    def ndim(self):
        return len(self.shape)

    def mesh(self):
        """
        Coordinates of all gridpoints, one array per axis, each with the shape of the grid.
        """
        if self.ndim == 1:
            return (self.z, )
        return tuple(np.meshgrid(*self.axes, indexing='ij'))

    def integration_weights(self):
        """
        The volume of each grid cell. For the radial geometries these are the exact volumes of the shells
        (per unit length for cylindrical geometry), such that summing them gives Grid.volume().

        Returns:
            ndarray : Cell volumes, with the shape of the grid
        """
        if self.geometry == Geometry.PLANAR:
            return np.full(self.shape, self.dz)
        elif self.geometry == Geometry.CYLINDRICAL:
            return 2 * np.pi * self.z * self.dz
        elif self.geometry == Geometry.SPHERICAL:
            return 4 * np.pi * (self.z**2 * self.dz + self.dz**3 / 12)
        return np.full(self.shape, np.prod(self.spacing))

    def integrate(self, f):
        """
        Integrate a field over the domain. Leading axes (e.g. components) are kept.

        Args:
            f (ndarray) : Field with shape (..., *grid.shape)
        Returns:
            float or ndarray : The integral
        """
        f = np.asarray(f)
        w = self.integration_weights()
        axes = tuple(range(f.ndim - self.ndim, f.ndim))
        return np.sum(f * w, axis=axes)

    def volume(self, z=None):
        """
        Compute the volume of the grid, if a position is supplied, use that position as the endpoint of the domain
        Useful to be able to treat volumes without thinking about geometry all the time.
        For planar geometry this is a length (volume per area), for cylindrical geometry an area (volume per length).

        Args:
            z (float, optional) : If supplied, compute the volume of the grid bounded by r = z.

        Returns:
            float : The volume
        """
        end = self.domain_end if z is None else z
        if self.geometry == Geometry.PLANAR:
            return end - self.domain_start
        elif self.geometry == Geometry.CYLINDRICAL:
            return np.pi * end**2
        elif self.geometry == Geometry.SPHERICAL:
            return (4 / 3) * np.pi * end**3
        if z is not None:
            raise NotImplementedError('Partial volumes are not implemented for Cartesian grids.')
        return float(np.prod(self.lengths))

    def area(self, z):
        """
        Compute the area of a surface dividing the domain at position z.

        Args:
            z (float) : Position of the dividing surface

        Returns:
            float : The area of the dividing surface.
        """
        if self.geometry == Geometry.PLANAR:
            return 1
        elif self.geometry == Geometry.CYLINDRICAL:
            return 2 * np.pi * z
        elif self.geometry == Geometry.SPHERICAL:
            return 4 * np.pi * z**2
        raise NotImplementedError(f'Grid area not implemented for geometry {self.geometry.name}')

    def size(self, V):
        """
        Compute the size (radius or length) of a grid with a given volume (inverse of Grid.volume)

        Args:
            V (float) : The volume

        Returns:
            float : The radius or length of the grid with the supplied volume
        """
        if self.geometry == Geometry.PLANAR:
            return V + self.domain_start
        elif self.geometry == Geometry.CYLINDRICAL:
            return np.sqrt(V / np.pi)
        elif self.geometry == Geometry.SPHERICAL:
            return (3 * V / (4 * np.pi))**(1 / 3)
        raise NotImplementedError(f'Grid size not implemented for geometry {self.geometry.name}')

    def shifted(self, dz):
        """Utility
        Return a copy of this grid with the domain moved by dz. Only meaningful for planar grids.
        """
        return Grid(self.shape, self.geometry, self.lengths,
                    domain_start=tuple(s + dz for s in self.starts)) if self.ndim > 1 \
            else Grid(self.N, self.geometry, self.L, domain_start=self.domain_start + dz)

    def centered_at(self, z0):
        """Utility
        Return a copy of this grid where the domain width is maintained, and `z0` is at the center of the domain.
        """
        return self.shifted(z0 - self.get_center())

    def get_center(self):
        return self.domain_start + self.L / 2

    def refined(self, n_grid):
        """Utility
        The same domain with a different number of points. For planar grids the number of points is rounded up to a
        size the fft routines handle efficiently if `n_grid` is negative.
        """
        if n_grid < 0:
            n_grid = next_fast_len(-n_grid, real=True)
        return Grid(n_grid, self.geometry, self.lengths if self.ndim > 1 else self.L,
                    domain_start=self.starts if self.ndim > 1 else self.domain_start)

    def __getitem__(self, item):
        """Utility
        Grids can be sliced, not accessed by index. Slicing a Grid will return a new Grid with the same geometry, but with
        the number of points, and domain start/end/width adjusted as if you were slicing the Grid.z attribute. That is:
        ```
        all(grid.z[start : stop] == grid[start : stop].z) # True (to rounding)
        len(grid.z[start : stop]) == grid[start : stop].N # True
        grid.dz == grid[start : stop].dz # True
        ```
        Only one dimensional grids can be sliced.
        """
        if self.ndim > 1:
            raise TypeError('Only one dimensional grids can be sliced.')
        if isinstance(item, slice):
            start, stop, step = item.indices(self.N)
            if step != 1:
                raise ValueError('Grids can only be sliced with unit step.')
            n_grid = stop - start
            return Grid(n_grid, self.geometry, self.dz * n_grid, domain_start=self.domain_start + start * self.dz)

        raise TypeError('Grids can be sliced, not accessed by index!')

    def _key(self):
        return (int(self.geometry), self.shape, self.lengths, self.starts)

    def __eq__(self, other):
        if not isinstance(other, Grid):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self):
        return hash(self._key())

    def __repr__(self):
        if self.ndim == 1:
            return f'Grid with L : {self.L}, N : {self.N}, geometry : {self.geometry.name}, ' \
                   f'domain_start : {self.domain_start}'
        return f'Grid with lengths : {self.lengths}, shape : {self.shape}, geometry : {self.geometry.name}, ' \
               f'domain_start : {self.starts}'


class PlanarGrid(Grid):

    def __init__(self, n_grid, domain_size, domain_start=0):
        super().__init__(n_grid, Geometry.PLANAR, domain_size, domain_start=domain_start)


class CylindricalGrid(Grid):

    def __init__(self, n_grid, domain_size):
        super().__init__(n_grid, Geometry.CYLINDRICAL, domain_size)


class SphericalGrid(Grid):

    def __init__(self, n_grid, domain_size):
        super().__init__(n_grid, Geometry.SPHERICAL, domain_size)


class CartesianGrid(Grid):

    def __init__(self, n_grid, domain_size, domain_start=0):
        super().__init__(n_grid, Geometry.CARTESIAN, domain_size, domain_start=domain_start)
