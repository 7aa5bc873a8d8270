"""
Exceptions raised by the solver machinery.

The split follows what a caller can do about each problem:

    ConfigurationError  : The problem was set up wrong. Raised before any iteration runs.
    NumericalDivergence : The iteration produced non-finite values. Fatal, but carries the last finite
                          density field so that the caller can inspect it or restart from it.
    ConvergenceFailure  : The iteration cap was reached (or the solve was aborted) without meeting the tolerance.
                          Never raised by `solve`, the best-effort result is returned instead, with the failure
                          attached. Use `ProfileResult.raise_on_failure()` to turn it into an exception.
"""


class ScfError(Exception):
    """Base class for all errors raised by scfpack."""


class ConfigurationError(ScfError, ValueError):
    pass


class NumericalDivergence(ScfError, ArithmeticError):

    def __init__(self, message, snapshot=None, iteration=None):
        """
        Args:
            message (str) : Description of what went wrong
            snapshot (ndarray, optional) : Last density field where all values were finite,
                                            indexed as snapshot[<comp idx>][<grid idx>]
            iteration (int, optional) : The iteration where divergence was detected
        """
        super().__init__(message)
        self.snapshot = snapshot
        self.iteration = iteration


class ConvergenceFailure(ScfError, RuntimeError):

    def __init__(self, message, residual=None, iterations=None, result=None):
        super().__init__(message)
        self.residual = residual
        self.iterations = iterations
        self.result = result
