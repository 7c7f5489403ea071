import torch.nn as nn

from invnet.layers.base import InvertibleLayer
from invnet.layers.actnorm import ActNorm
from invnet.layers.hyperbolic import HyperbolicLayer
from invnet.layers.utils import tensor_split, tensor_cat


class NetworkHyperbolic(InvertibleLayer):
    def __init__(self, n_in, architecture, k=3, s=1, p=1, logdet=True, alpha=1.0, ndims=2):
        """
        Stack of hyperbolic layers (Lensink et al., 2019). The input is normalized with an ActNorm layer
        and split along the channels into the two states (X_prev, X_curr) of the leapfrog scheme.

        Parameters
        ----------
            n_in : :obj:`int`
                Number of input channels, must be even.

            architecture : :obj:`list` of :obj:`tuple`
                One ``(action, n_hidden)`` pair per hyperbolic layer, see ``HyperbolicLayer``.

            k, s, p : :obj:`int`
                Kernel size, stride and padding of the convolutions.

            logdet : :obj:`bool`
                Return the log-determinant on forward. Only the ActNorm layer contributes.

            alpha : :obj:`float`
                Step size of the hyperbolic layers.

            ndims : :obj:`int`
                Number of spatial dimensions.

        """
        super(NetworkHyperbolic, self).__init__()
        if n_in % 2 != 0:
            raise ValueError("NetworkHyperbolic needs an even number of channels, got {}".format(n_in))
        self.logdet = logdet
        self.AN = ActNorm(n_in, logdet=logdet)
        self.HL = nn.ModuleList()
        n = n_in // 2
        for action, n_hidden in architecture:
            layer = HyperbolicLayer(n, k, s, p, action=action, alpha=alpha, n_hidden=n_hidden, ndims=ndims)
            self.HL.append(layer)
            n = layer.n_curr

    def forward(self, x):
        if self.logdet:
            x, logdet = self.AN.forward(x)
        else:
            x = self.AN.forward(x)
        x_prev, x_curr = tensor_split(x)
        for layer in self.HL:
            x_prev, x_curr = layer.forward(x_prev, x_curr)
        y = tensor_cat(x_prev, x_curr)
        if self.logdet:
            return y, logdet
        return y

    def inverse(self, y):
        x_prev, x_curr = tensor_split(y)
        for layer in reversed(self.HL):
            x_prev, x_curr = layer.inverse(x_prev, x_curr)
        return self.AN.inverse(tensor_cat(x_prev, x_curr))

    def _reverse_pass(self, dy, y, adjoint):
        dx_prev, dx_curr = tensor_split(dy)
        x_prev, x_curr = tensor_split(y)
        grads = []
        for layer in reversed(self.HL):
            if adjoint:
                dx_prev, dx_curr, dtheta, x_prev, x_curr = layer.adjoint_jacobian(dx_prev, dx_curr, x_prev, x_curr)
                grads.insert(0, dtheta)
            else:
                dx_prev, dx_curr, x_prev, x_curr = layer.backward(dx_prev, dx_curr, x_prev, x_curr)
        dx, x = tensor_cat(dx_prev, dx_curr), tensor_cat(x_prev, x_curr)
        if adjoint:
            dx, dtheta, x = self.AN.adjoint_jacobian(dx, x)
            grads.insert(0, dtheta)
            return dx, [g for dtheta in grads for g in dtheta], x
        return self.AN.backward(dx, x)

    def backward(self, dy, y):
        """Returns ``(dx, x)`` and accumulates the parameter gradients"""
        return self._reverse_pass(dy, y, adjoint=False)

    def adjoint_jacobian(self, dy, y):
        """Returns ``(dx, dtheta, x)`` with dtheta aligned with ``get_params()``"""
        return self._reverse_pass(dy, y, adjoint=True)

    def jacobian(self, dx, dtheta, x):
        chunks = self._split_dtheta(dtheta, [self.AN] + list(self.HL))
        out = self.AN.jacobian(dx, chunks[0], x)
        dx, x = out[0], out[1]
        dx_prev, dx_curr = tensor_split(dx)
        x_prev, x_curr = tensor_split(x)
        for layer, dtheta_ in zip(self.HL, chunks[1:]):
            dx_prev, dx_curr, x_prev, x_curr = layer.jacobian(dx_prev, dx_curr, dtheta_, x_prev, x_curr)
        dy, y = tensor_cat(dx_prev, dx_curr), tensor_cat(x_prev, x_curr)
        if self.logdet:
            return dy, y, out[2], out[3]
        return dy, y
