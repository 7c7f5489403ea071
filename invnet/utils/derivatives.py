"""Numerical checks of hand-written derivatives

A gradient g of f at x0 is correct when the first order Taylor error
:math:`|f(x_0 + h dx) - f(x_0) - h \\langle dx, g \\rangle|` decays quadratically in h, while the zeroth
order error :math:`|f(x_0 + h dx) - f(x_0)|` decays linearly. A transposed Jacobian is correct when
:math:`\\langle J dx, dy \\rangle = \\langle dx, J^T dy \\rangle`.
"""
import logging
import numpy as np
import torch


logger = logging.getLogger('derivatives')


def _as_list(x):
    if isinstance(x, (list, tuple)):
        return list(x)
    return [x]


def dot(a, b):
    """Inner product of two tensors or of two equally long lists of tensors"""
    return float(sum([torch.sum(x * y).item() for x, y in zip(_as_list(a), _as_list(b))]))


def taylor_test(fn, x0, dx, h=0.1, maxiter=6, factor=2.0):
    """
    Zeroth and first order Taylor errors of fn around x0 in the direction dx

    Parameters
    ----------
        fn : :obj:`callable`
            Maps x to ``(f, g)`` with f a scalar and g the gradient of f with respect to x. x may be a
            tensor or a list of tensors (for instance a list of parameters).
        x0 : :obj:`torch.Tensor` or :obj:`list`
            Point of the expansion.
        dx : :obj:`torch.Tensor` or :obj:`list`
            Perturbation, same structure as x0.
        h : :obj:`float`
            Initial step length.
        maxiter : :obj:`int`
            Number of step lengths.
        factor : :obj:`float`
            The step length is divided by factor after every iteration.

    Returns
    -------
        :obj:`tuple`
            Two numpy arrays with the zeroth and first order errors.

    """
    single = not isinstance(x0, (list, tuple))
    f0, g0 = fn(x0)
    f0 = float(f0)
    slope = dot(dx, g0)
    err1 = np.zeros(maxiter)
    err2 = np.zeros(maxiter)
    for j in range(maxiter):
        x = [x + h * d for x, d in zip(_as_list(x0), _as_list(dx))]
        f = float(fn(x[0] if single else x)[0])
        err1[j] = abs(f - f0)
        err2[j] = abs(f - f0 - h * slope)
        logger.debug('h={:.3e}\terr1={:.5e}\terr2={:.5e}'.format(h, err1[j], err2[j]))
        h = h / factor
    return err1, err2


def convergence_rates(errors, factor=2.0):
    """Observed orders of convergence between consecutive step lengths"""
    errors = np.asarray(errors, dtype=np.float64)
    return np.log(errors[:-1] / errors[1:]) / np.log(factor)


def adjoint_test(fwd, adj, dx, dy):
    """
    Inner products :math:`\\langle fwd(dx), dy \\rangle` and :math:`\\langle dx, adj(dy) \\rangle`

    Both arguments and results of fwd and adj may be tensors or lists of tensors.
    """
    a = dot(fwd(dx), dy)
    b = dot(dx, adj(dy))
    logger.debug('adjoint test: {:.8e} vs {:.8e}'.format(a, b))
    return a, b
