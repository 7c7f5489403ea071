import torch
import torch.nn as nn

from invnet.layers.base import InvertibleLayer


def householder(v):
    """Reflection matrix I - 2 v v^T / (v^T v)"""
    v = v.reshape(-1, 1)
    return torch.eye(v.shape[0], dtype=v.dtype, device=v.device) - 2.0 * (v @ v.t()) / torch.sum(v * v)


class Conv1x1(InvertibleLayer):
    def __init__(self, k, v1=None, v2=None, v3=None, logdet=False):
        """
        Invertible 1x1 convolution, mixing the channels at every spatial location with an orthogonal
        matrix parameterized by three Householder reflections:

        :math:`W = H(v1) H(v2) H(v3)`

        :math:`Y[b, :, ...] = W X[b, :, ...]`

        Since W is orthogonal the inverse is the transpose and the log-determinant is zero.

        Parameters
        ----------
            k : :obj:`int`
                Number of channels.

            v1, v2, v3 : :obj:`torch.Tensor`, optional
                Householder vectors of length k, randomly initialized if not given.

            logdet : :obj:`bool`
                Return ``(Y, 0)`` on forward to compose with other log-determinant layers.

        """
        super(Conv1x1, self).__init__()
        self.k = k
        self.v1 = nn.Parameter(torch.randn(k) if v1 is None else v1.clone())
        self.v2 = nn.Parameter(torch.randn(k) if v2 is None else v2.clone())
        self.v3 = nn.Parameter(torch.randn(k) if v3 is None else v3.clone())
        self.logdet = logdet

    def weight(self):
        return householder(self.v1) @ householder(self.v2) @ householder(self.v3)

    def _mix(self, w, x):
        if x.shape[1] != self.k:
            raise ValueError("Expected {} channels, got {}".format(self.k, x.shape[1]))
        return torch.einsum('ij,bj...->bi...', w.to(x.dtype), x)

    def forward(self, x):
        y = self._mix(self.weight(), x)
        if self.logdet:
            return y, torch.zeros((), dtype=x.dtype, device=x.device)
        return y

    def inverse(self, y):
        return self._mix(self.weight().t(), y)

    def extra_repr(self):
        return 'k={}'.format(self.k)
