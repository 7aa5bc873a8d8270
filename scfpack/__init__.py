from . import grid
from . import profile
from . import WeightFunction
from . import Functional
from . import solvers
from . import result
from .errors import ScfError, ConfigurationError, NumericalDivergence, ConvergenceFailure

Grid = grid.Grid
Geometry = grid.Geometry
PlanarGrid = grid.PlanarGrid
CylindricalGrid = grid.CylindricalGrid
SphericalGrid = grid.SphericalGrid
CartesianGrid = grid.CartesianGrid
Profile = profile.Profile
FunctionalContribution = Functional.FunctionalContribution
WeightedDensity = Functional.WeightedDensity
build_graph = Functional.build_graph
BulkConditions = solvers.BulkConditions
SolverConfig = solvers.SolverConfig
SolverState = solvers.SolverState
SequentialSolver = solvers.SequentialSolver
solve = solvers.solve
sweep = solvers.sweep
ProfileResult = result.ProfileResult
