import json
import warnings
from collections.abc import Iterable
import numpy as np
from scfpack.grid import Grid, Geometry
from scfpack.external_potential import external_potential_array
from scfpack.errors import ConfigurationError


class Profile(np.ndarray):
    """
    Class for holding density profiles, Helmholtz energy densities etc.

    The idea is the following: We want to treat a profile (i.e. a vector of densities) as a numpy array for math purposes.
    However, a density profile is always tied to a discrete grid in space, which determines how convolutions are performed.

    So: Profile is a class that inherits from ndarray, such that Profile objects may be treated as ndarrays in calculations,
    but are also passed a Grid object upon initialisation, so that the spacial discretisation and geometry can be retrieved
    as needed, without needing to keep track of and pass around both the density, the grid and the geometry.

    Finally, a Profile can be a vector field (e.g. a vector weighted density). Therefore, we have the attribute
    is_vector_field, such that we can write generic code most places, and only check whether a profile is a vector field
    in the places where we need to handle that differently.

    Note: Some operations may implicitly lead to a Profile being converted to an ndarray, and losing the grid attribute.
        So be a bit careful
    """
    def __new__(cls, profile, grid=None, geometry=Geometry.PLANAR, domain_size=10, is_vector_field=False):
        """
        This is how you inherit from ndarray (using __new__ instead of __init__) see also: __array_finalize__

        Args:
            profile (Sized) : A list or array of densities
            grid (Grid) : The spacial grid associated with the densities in 'profile'
            geometry (Geometry) : Instead of passing an initialised Grid object, a Geometry and domain_size can be
                                passed instead, and the Grid object will be created.
            domain_size (float) : If no Grid is supplied, this is the size of the domain
            is_vector_field (bool) : Whether or not this profile is a vector field.
        """
        obj = np.asarray(profile, dtype=float).view(cls)

        if grid is not None:
            obj.grid = grid
        else:
            obj.grid = Grid(len(profile), geometry, domain_size)

        expected = ((obj.grid.geometry.dimension(), ) if is_vector_field else ()) + obj.grid.shape
        if obj.shape != expected:
            raise ConfigurationError(f'Profile with shape {obj.shape} does not match grid with shape {obj.grid.shape}.')

        obj.is_vector_field = is_vector_field
        return obj

    def __array_finalize__(self, obj):
        """
        This is how we inherit from ndarray
        """
        if obj is None: return
        self.grid = getattr(obj, 'grid', None)
        self.is_vector_field = getattr(obj, 'is_vector_field', None)

    def is_even(self):
        return not self.is_vector_field

    def is_odd(self):
        return not self.is_even()

    def __call__(self, z):
        """
        Get value of profile as a function of position, instead of by index. Uses linear interpolation between points.
        Outside the grid, the value at the nearest edge is used. Only for one dimensional grids.

        Args:
            z (float or Iterable[float]) : Position
        Returns:
            float : Value of profile
        """
        if self.grid.ndim > 1:
            raise NotImplementedError('Interpolation is only implemented for one dimensional grids.')
        if isinstance(z, Iterable):
            z = np.asarray(z, dtype=float)
            return np.interp(z, self.grid.z, np.asarray(self))
        return float(np.interp(z, self.grid.z, np.asarray(self)))

    def on_grid(self, grid):
        """
        Create a copy this profile on a new grid. If the new grid spans a larger domain, the edge values of the Profile
        are used to fill out the grid. When the new gridpoints do not align with the existing ones, linear interpolation
        between the two nearest gridpoints is used to compute the value at the new gridpoint.
        Can be useful to increase or decrease grid resolution, or extend or cut off the domain.

        Args:
            grid (Grid) : The new grid

        Returns:
            Profile : Copy of this profile interpolated onto the supplied grid
        """
        return Profile(self(grid.z), grid)

    @staticmethod
    def lst_on_grid(lst, grid):
        """
        See: Profile.on_grid
        This method does the same, but for a list[Profile]
        """
        return [p.on_grid(grid) for p in lst]

    def integrate(self):
        """
        Integrate the profile over the grid, using the cell volumes of the grid. For planar geometry the result is per
        area, for cylindrical geometry per length.
        """
        return float(self.grid.integrate(np.asarray(self)))

    def equimolar_interface_position(self):
        """
        Position of the equimolar dividing surface between the values at the two ends of the profile.
        """
        bulk_1 = self[0]
        bulk_2 = self[-1]
        N = self.integrate()
        V = self.grid.volume()
        V1 = (N - V * bulk_2) / (bulk_1 - bulk_2)
        return self.grid.size(V1) # Handles differentiating between spherical and planar geometry

    def save(self, filename):
        """Utility
        Save the profile to <filename>, used in combination with load_dict(<filename>)
        """
        with open(filename, 'w') as file:
            json.dump(self.to_dict(), file, indent=4)

    def to_dict(self):
        """Utility
        Convert the Profile to a dict, used in combination with save-methods.
        """
        return {'array': np.asarray(self).tolist(),
                'grid': grid_to_dict(self.grid),
                'is_vector_field': bool(self.is_vector_field)}

    @staticmethod
    def save_list(lst, filename):
        """Utility
        save a list[Profile] object to a json file, used in combination with load_file

        Args:
            lst (list[Profile]) : The profiles to save
            filename (str) : Write destination (does not check for overwrite)
        """
        data = {ci : lst[ci].to_dict() for ci in range(len(lst))}
        with open(filename, 'w') as file:
            json.dump(data, file, indent=4)

    @staticmethod
    def load_dict(dct):
        """Construction
        Create a Profile from a dict created using to_dict
        """
        return Profile(dct['array'], grid_from_dict(dct['grid']), is_vector_field=dct['is_vector_field'])

    @staticmethod
    def load_file(filename):
        """Construction
        Create a list[Profile] from a json file written using save_list
        """
        with open(filename, 'r') as file:
            data = json.load(file)
        profiles = [None for _ in data.keys()]
        for ci, dct in data.items():
            profiles[int(ci)] = Profile.load_dict(dct)
        return profiles

    @staticmethod
    def to_records(lst):
        """Utility
        Flatten a list[Profile] to records (species index, grid point index, density), with the grid metadata.
        The grid point index is the flat (row major) index for multidimensional grids.

        Args:
            lst (list[Profile]) : The profiles, all on the same grid
        Returns:
            dict : {'grid' : <grid metadata>, 'records' : list[(int, int, float)]}
        """
        grid = lst[0].grid
        records = [(ci, pi, float(val)) for ci, p in enumerate(lst) for pi, val in enumerate(np.asarray(p).ravel())]
        return {'grid': grid_to_dict(grid), 'records': records}

    @staticmethod
    def from_records(data):
        """Construction
        Inverse of to_records. Missing records are an error.
        """
        grid = grid_from_dict(data['grid'])
        records = data['records']
        n_species = 1 + max(int(r[0]) for r in records)
        arr = np.full((n_species, grid.N), np.nan)
        for ci, pi, val in records:
            arr[int(ci), int(pi)] = val
        if np.any(np.isnan(arr)):
            raise ConfigurationError('Records do not cover every species and grid point.')
        return [Profile(a.reshape(grid.shape), grid) for a in arr]

    @staticmethod
    def step_function(grid, high_val, low_val=0):
        """
        Generates a profile that is a step function along the first axis of the grid, like this

        high val -----
                     |
                     |
                     ------ low val

        Args:
            grid (Grid) : The Grid to use
            high_val (float) : High value
            low_val (float) : Low value
        """
        profile = np.full(grid.shape, high_val, dtype=float)
        profile[grid.shape[0] // 2 :] = low_val
        return Profile(profile, grid)

    @staticmethod
    def tanh_profile(grid, left_val, right_val, width_factors=None, centre=None):
        """
        Generate a tanh density Profile, going from left_val to right_val

        Args:
            grid (Grid) : The grid used for all Profiles
            left_val (list[float]) : Value on the left side (minimum z in grid)
            right_val (list[float]) : Value on the right side (maximum z in grid)
            width_factors (list[float], optional) : Higher width_factor gives wider tanh profile
            centre (float, optional) : The position to centre the tanh-profiles at
        Returns:
            list[Profile] : The tanh Profiles from left_val at min(grid.z) to right_val at max(grid.z)
        """
        if width_factors is None:
            width_factors = np.ones_like(left_val)
        if centre is None:
            centre = grid.get_center()

        profile_arr = [None for _ in range(len(left_val))]
        for i in range(len(profile_arr)):
            if 1 - np.tanh((max(grid.z) - centre) / width_factors[i]) > 1e-10:
                warnings.warn('Grid may be too narrow for tanh-Profile.', RuntimeWarning, stacklevel=2)

            p = np.tanh((grid.z - centre) / width_factors[i]) / np.tanh(max(abs((grid.z - centre) / width_factors[i]))) # profile from -1 to 1
            p = (p + 1) / 2 # profile from 0 to 1
            p = p * (right_val[i] - left_val[i]) + left_val[i] # profile from left_val to right_val
            profile_arr[i] = Profile(p, grid)

        return profile_arr

    @staticmethod
    def from_potential(rho_bulk, T, grid, Vext, w3=None, convolver=None, max_packing=0.99):
        """
        Generates the equilibrium profile for an ideal gas in the external potential Vext.

        Args:
            rho_bulk (list[float]) : bulk densities
            T (float) : Temperature [K]
            grid (Grid) : The grid to be associated with the profile
            Vext (callable or list[callable]) : The external potential [K] (see: external_potential.py)
            w3 (list[Analytical], optional) : The weight functions for n_3 (FMT weighted density). Used to prevent too
                                                high inital densities.
            convolver (Convolver, optional) : Used to compute n_3, required if w3 is given
            max_packing (float) : Where n_3 exceeds this value, the densities are scaled down
        Returns:
            list[Profile] : The ideal gas density Profile for each species.
        """
        rho_bulk = np.atleast_1d(rho_bulk)
        beta_V = external_potential_array(Vext, grid, T, len(rho_bulk))
        profile_arr = rho_bulk.reshape((-1, ) + (1, ) * grid.ndim) * np.exp(- beta_V)

        if w3 is not None:
            if convolver is None:
                raise ConfigurationError('A Convolver is required to cap the packing fraction.')
            n3 = sum(convolver.convolve(w3[i], profile_arr[i]) for i in range(len(rho_bulk)))
            nt = np.sum(profile_arr, axis=0)
            packing = sum(profile_arr[i] * w3[i].real_integral() for i in range(len(rho_bulk)))
            too_dense = (n3 >= max_packing) & (nt > 1e-4)
            scale = np.ones(grid.shape)
            scale[too_dense] = max_packing / packing[too_dense]
            profile_arr = profile_arr * scale

        return [Profile(p, grid) for p in profile_arr]

    @staticmethod
    def zeros(grid, nprofiles=1):
        """
        Quickly allocate a profile or list of profiles (kind of like np.zeros)

        Args:
            grid (Grid) : The Grid to be associated with all profiles
            nprofiles (int) : The number of profiles to allocate

        Returns:
            Profile : If nprofiles=1
            list[Profile] : If nprofiles > 1.
        """
        if nprofiles == 1:
            return Profile(np.zeros(grid.shape), grid)
        return [Profile(np.zeros(grid.shape), grid) for _ in range(nprofiles)]

    @staticmethod
    def zeros_like(profile_arr):
        """
        Kind of like np.zeros_like

        Args:
            profile_arr (list[Profile]) : The template

        Returns:
            list[Profile] : The same number of profiles as in profile_arr, using the same grid.
        """
        return [Profile.zeros(profile_arr[0].grid) for _ in profile_arr]


def grid_to_dict(grid):
    return {'geometry': int(grid.geometry),
            'n_grid': list(grid.shape),
            'domain_size': list(grid.lengths),
            'domain_start': list(grid.starts)}


def grid_from_dict(dct):
    geometry = Geometry(dct['geometry'])
    if geometry.dimension() == 1:
        return Grid(dct['n_grid'][0], geometry, dct['domain_size'][0], domain_start=dct['domain_start'][0])
    return Grid(dct['n_grid'], geometry, dct['domain_size'], domain_start=dct['domain_start'])
