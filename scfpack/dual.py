"""
Dual numbers for computing the derivatives of Helmholtz energy densities, without implementing the derivatives by hand.

A Dual holds a value array `re`, and an array of first order perturbations `eps` with one extra, trailing axis: One entry
per seeded variable. Arithmetic follows the chain rule,

    f(a + b eps) = f(a) + f'(a) b eps,

so evaluating a free energy density on Duals seeded with unit perturbations gives the partial derivatives in the
eps-part of the result.

Dual implements __array_ufunc__ and __array_function__, such that numpy functions (np.log, np.exp, np.sum, np.where, ...)
work on Duals. This means functional contributions written using numpy run unchanged on plain arrays and on Duals.

The free energy densities are local functions of the weighted densities: phi(r) only depends on n_alpha(r). Therefore
every grid point is seeded with the same unit perturbation (one per weighted density, and one per component of a
vector weighted density), and a single evaluation gives all partial derivatives at all grid points, at a cost that
is linear in the number of grid points.
"""
import numpy as np

_UNARY = {
    np.negative : lambda x : -np.ones_like(x),
    np.positive : np.ones_like,
    np.sqrt : lambda x : 0.5 / np.sqrt(x),
    np.exp : np.exp,
    np.expm1 : np.exp,
    np.log : lambda x : 1 / x,
    np.log1p : lambda x : 1 / (1 + x),
    np.reciprocal : lambda x : - 1 / x**2,
    np.square : lambda x : 2 * x,
    np.tanh : lambda x : 1 - np.tanh(x)**2,
    np.absolute : np.sign,
}


class Dual:

    __array_priority__ = 100

    def __init__(self, re, eps):
        self.re = np.asarray(re, dtype=float)
        eps = np.asarray(eps, dtype=float)
        if eps.shape[:-1] != self.re.shape:
            eps = np.broadcast_to(eps, self.re.shape + eps.shape[-1:])
        self.eps = eps

    @staticmethod
    def variable(value, slot, n_slots):
        """
        A Dual with unit perturbation in `slot`, at every element of `value`.
        """
        value = np.asarray(value, dtype=float)
        eps = np.zeros(n_slots)
        eps[slot] = 1
        return Dual(value, np.broadcast_to(eps, value.shape + (n_slots, )))

    @property
    def shape(self):
        return self.re.shape

    @property
    def ndim(self):
        return self.re.ndim

    def __len__(self):
        return len(self.re)

    def __getitem__(self, item):
        """Indexing is only supported on the value axes, not on the perturbation axis."""
        return Dual(self.re[item], self.eps[item])

    def __repr__(self):
        return f'Dual(re={self.re}, eps={self.eps})'

    # Comparisons only look at the value
    def __lt__(self, other): return self.re < _re(other)
    def __le__(self, other): return self.re <= _re(other)
    def __gt__(self, other): return self.re > _re(other)
    def __ge__(self, other): return self.re >= _re(other)

    def __add__(self, other): return _add(self, other)
    def __radd__(self, other): return _add(other, self)
    def __sub__(self, other): return _add(self, _neg(other))
    def __rsub__(self, other): return _add(other, _neg(self))
    def __mul__(self, other): return _mul(self, other)
    def __rmul__(self, other): return _mul(other, self)
    def __truediv__(self, other): return _div(self, other)
    def __rtruediv__(self, other): return _div(other, self)
    def __pow__(self, other): return _pow(self, other)
    def __rpow__(self, other): return _pow(other, self)
    def __neg__(self): return _neg(self)
    def __pos__(self): return self
    def __abs__(self): return _unary(np.absolute, self)

    def sum(self, axis=None, dtype=None, out=None, keepdims=False, **kwargs):
        if out is not None:
            raise TypeError('Dual.sum does not support out=')
        if axis is None:
            axis = tuple(range(self.ndim))
        axis = tuple(a % self.ndim for a in np.atleast_1d(axis))
        return Dual(self.re.sum(axis=axis, keepdims=keepdims), self.eps.sum(axis=axis, keepdims=keepdims))

    def __array_ufunc__(self, ufunc, method, *inputs, **kwargs):
        if method != '__call__' or 'out' in kwargs:
            return NotImplemented
        if ufunc in _UNARY:
            return _unary(ufunc, inputs[0])
        if ufunc is np.add:
            return _add(*inputs)
        if ufunc is np.subtract:
            return _add(inputs[0], _neg(inputs[1]))
        if ufunc is np.multiply:
            return _mul(*inputs)
        if ufunc is np.true_divide:
            return _div(*inputs)
        if ufunc is np.power:
            return _pow(*inputs)
        if ufunc in (np.less, np.less_equal, np.greater, np.greater_equal, np.equal, np.not_equal):
            return ufunc(*[_re(x) for x in inputs], **kwargs)
        return NotImplemented

    def __array_function__(self, func, types, args, kwargs):
        if func is np.sum:
            a, *rest = args
            return a.sum(*rest, **kwargs)
        if func is np.where:
            return where(*args, **kwargs)
        return NotImplemented


def _re(x):
    return x.re if isinstance(x, Dual) else x


def _expand(x):
    """Append the perturbation axis to a value array, for broadcasting against eps."""
    return np.asarray(x)[..., np.newaxis]


def _neg(a):
    if isinstance(a, Dual):
        return Dual(-a.re, -a.eps)
    return -a


def _add(a, b):
    if isinstance(a, Dual) and isinstance(b, Dual):
        return Dual(a.re + b.re, a.eps + b.eps)
    if isinstance(a, Dual):
        return Dual(a.re + b, a.eps)
    return Dual(a + b.re, b.eps)


def _mul(a, b):
    if isinstance(a, Dual) and isinstance(b, Dual):
        return Dual(a.re * b.re, a.eps * _expand(b.re) + _expand(a.re) * b.eps)
    if isinstance(a, Dual):
        return Dual(a.re * b, a.eps * _expand(b))
    return Dual(a * b.re, _expand(a) * b.eps)


def _div(a, b):
    if isinstance(b, Dual):
        inv = 1 / b.re
        return _mul(a, Dual(inv, - _expand(inv**2) * b.eps))
    return _mul(a, 1 / np.asarray(b))


def _pow(a, b):
    if isinstance(b, Dual):
        if not isinstance(a, Dual):
            value = np.asarray(a, dtype=float) ** b.re
            return Dual(value, b.eps * _expand(value * np.log(a)))
        # a**b = exp(b * log(a))
        return _unary(np.exp, _mul(b, _unary(np.log, a)))
    b = np.asarray(b)
    if b.ndim == 0 and b == 0:
        return Dual(np.ones_like(a.re), np.zeros_like(a.eps))
    return Dual(a.re**b, a.eps * _expand(b * a.re**(b - 1)))


def _unary(ufunc, a):
    return Dual(ufunc(a.re), a.eps * _expand(_UNARY[ufunc](a.re)))


def where(cond, a, b):
    """
    np.where for Duals, the perturbations are selected with the same condition as the values. Values in the branch
    that is not selected do not propagate, even if they are not finite.
    """
    cond = np.asarray(_re(cond), dtype=bool)
    if not isinstance(a, Dual) and not isinstance(b, Dual):
        return np.where(cond, a, b)
    n_slots = (a if isinstance(a, Dual) else b).eps.shape[-1]
    a_eps = a.eps if isinstance(a, Dual) else np.zeros(np.shape(a) + (n_slots, ))
    b_eps = b.eps if isinstance(b, Dual) else np.zeros(np.shape(b) + (n_slots, ))
    return Dual(np.where(cond, _re(a), _re(b)), np.where(_expand(cond), a_eps, b_eps))


def partial_derivatives(func, args, vector=None):
    """
    Evaluate func(*args), and the partial derivatives of the result with respect to each argument, assuming that the
    result at a point only depends on the arguments at the same point.

    Args:
        func (callable) : Function of len(args) arrays, written using numpy operations.
        args (list[ndarray]) : The arguments. Scalar fields must broadcast against the result, vector fields have an
                                additional leading axis with one entry per component.
        vector (list[bool], optional) : Which arguments are vector fields. Defaults to none of them.

    Returns:
        ndarray : The value of func(*args)
        list[ndarray] : The partial derivative with respect to each argument, shaped like the argument.
    """
    if vector is None:
        vector = [False for _ in args]

    args = [np.asarray(a, dtype=float) for a in args]
    n_slots = sum(a.shape[0] if is_vec else 1 for a, is_vec in zip(args, vector))

    duals = []
    slots = []
    slot = 0
    for a, is_vec in zip(args, vector):
        if is_vec:
            eps = np.zeros(a.shape + (n_slots, ))
            for c in range(a.shape[0]):
                eps[c, ..., slot + c] = 1
            duals.append(Dual(a, eps))
            slots.append(list(range(slot, slot + a.shape[0])))
            slot += a.shape[0]
        else:
            duals.append(Dual.variable(a, slot, n_slots))
            slots.append(slot)
            slot += 1

    value = func(*duals)
    if not isinstance(value, Dual):
        value = np.asarray(value, dtype=float)
        return value, [np.zeros(np.broadcast_shapes(a.shape, (a.shape[0], ) + value.shape) if is_vec
                                else np.broadcast_shapes(a.shape, value.shape))
                       for a, is_vec in zip(args, vector)]

    grads = []
    for a, is_vec, s in zip(args, vector, slots):
        if is_vec:
            grads.append(np.array([np.broadcast_to(value.eps[..., si], value.shape) for si in s]))
        else:
            grads.append(np.array(np.broadcast_to(value.eps[..., s], value.shape)))
    return value.re, grads
