import torch
import torch.nn as nn

from torch.func import jvp

from invnet.layers.base import InvertibleLayer, vjp
from invnet.layers.coupling_glow import create_coupling_glow
from invnet.layers.utils import tensor_split, tensor_cat


def _identity(x):
    return x


class NetworkLoop(InvertibleLayer):
    def __init__(self, n_in, n_hidden, maxiter, psi=None, k1=3, k2=3, p1=1, p2=1, ndims=2):
        """
        Loop unrolled inversion with invertible updates (Putzky and Welling, 2019).

        The state is a pair (eta, s) with 1 and n_in - 1 channels. Every iteration computes the gradient
        of the data misfit :math:`g = J^T (J \\psi(\\eta) - d)`, normalized by its largest absolute value,
        adds it to the first channel of s and updates :math:`cat(\\eta, s)` with a Glow coupling layer.

        Parameters
        ----------
            n_in : :obj:`int`
                Total number of channels of the state (eta and s), at least 2.

            n_hidden : :obj:`int`
                Number of hidden channels of the residual blocks.

            maxiter : :obj:`int`
                Number of unrolled iterations.

            psi : :obj:`callable`, optional
                Link function applied to eta before the forward operator. Default is the identity.

            k1, k2, p1, p2 : :obj:`int`
                Kernel sizes and paddings of the residual blocks.

            ndims : :obj:`int`
                Number of spatial dimensions.

        """
        super(NetworkLoop, self).__init__()
        if n_in < 2:
            raise ValueError("NetworkLoop needs at least 2 channels, got {}".format(n_in))
        self.n_in = n_in
        self.maxiter = maxiter
        self.psi = _identity if psi is None else psi
        self.L = nn.ModuleList([create_coupling_glow(n_in, n_hidden, k1=k1, k2=k2, p1=p1, p2=p2, logdet=False,
                                                     ndims=ndims)
                                for _ in range(maxiter)])

    def misfit_gradient(self, eta, J, d):
        """
        Normalized gradient of :math:`\\frac{1}{2}||J \\psi(\\eta) - d||^2` with respect to psi(eta)

        Parameters
        ----------
            eta : :obj:`torch.Tensor`
                Current estimate, shape (B, 1, *spatial).

            J : :obj:`torch.Tensor`
                Forward operator as a (n_data, prod(spatial)) matrix.

            d : :obj:`torch.Tensor`
                Observed data, shape (B, n_data).

        """
        batch_size = eta.shape[0]
        m = self.psi(eta).reshape(batch_size, -1)
        g = (m @ J.t() - d) @ J
        # an exact fit gives g = 0, which is left unscaled
        scale = torch.max(torch.abs(g))
        g = g / torch.where(scale > 0, scale, torch.ones_like(scale))
        return g.reshape(eta.shape)

    def _add_gradient(self, s, g, sign=1.0):
        return tensor_cat(s[:, :1] + sign * g, s[:, 1:])

    def forward(self, eta, s, J, d):
        """Returns the updated ``(eta, s)``"""
        for layer in self.L:
            g = self.misfit_gradient(eta, J, d)
            x = layer.forward(tensor_cat(eta, self._add_gradient(s, g)))
            eta, s = tensor_split(x, 1)
        return eta, s

    def inverse(self, eta, s, J, d):
        for layer in reversed(self.L):
            eta, s = tensor_split(layer.inverse(tensor_cat(eta, s)), 1)
            s = self._add_gradient(s, self.misfit_gradient(eta, J, d), sign=-1.0)
        return eta, s

    def backward(self, deta, ds, eta, s, J, d):
        """
        Backpropagate through the unrolled loop and reconstruct the initial state

        Returns
        -------
            :obj:`tuple`
                ``(deta, ds, eta, s)`` for the initial state. The gradients of the coupling layers are
                accumulated.

        """
        return self._reverse_pass(deta, ds, eta, s, J, d, lambda layer, dx, x: layer.backward(dx, x))

    def _reverse_pass(self, deta, ds, eta, s, J, d, layer_fn):
        for layer in reversed(self.L):
            dx, x = layer_fn(layer, tensor_cat(deta, ds), tensor_cat(eta, s))
            deta, ds = tensor_split(dx, 1)
            eta, s = tensor_split(x, 1)
            with torch.no_grad():
                g = self.misfit_gradient(eta, J, d)
            s = self._add_gradient(s, g, sign=-1.0)
            (dg,), _ = vjp(lambda e: self.misfit_gradient(e, J, d), (eta,), (ds[:, :1],))
            deta = deta + dg
        return deta, ds, eta, s

    def adjoint_jacobian(self, deta, ds, eta, s, J, d):
        """Returns ``(deta, ds, dtheta, eta, s)`` with dtheta aligned with ``get_params()``"""
        grads = []

        def step(layer, dx, x):
            dx, dtheta, x = layer.adjoint_jacobian(dx, x)
            grads.append(dtheta)
            return dx, x

        deta, ds, eta, s = self._reverse_pass(deta, ds, eta, s, J, d, step)
        dtheta = []
        for g in reversed(grads):
            dtheta += list(g)
        return deta, ds, dtheta, eta, s

    def jacobian(self, deta, ds, dtheta, eta, s, J, d):
        """Directional derivative of the unrolled loop, returns ``(deta, ds, eta, s)``"""
        chunks = self._split_dtheta(dtheta, list(self.L))
        for layer, dtheta_ in zip(self.L, chunks):
            g, dg = jvp(lambda e: self.misfit_gradient(e, J, d), (eta,), (deta,))
            x = tensor_cat(eta, self._add_gradient(s, g))
            dx = tensor_cat(deta, self._add_gradient(ds, dg))
            dx, x = layer.jacobian(dx, dtheta_, x)
            eta, s = tensor_split(x, 1)
            deta, ds = tensor_split(dx, 1)
        return deta, ds, eta, s
