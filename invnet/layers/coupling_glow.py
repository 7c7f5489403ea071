import torch

from invnet.layers.base import InvertibleLayer
from invnet.layers.activations import create_activation
from invnet.layers.conv1x1 import Conv1x1
from invnet.layers.residual import ResidualBlock
from invnet.layers.utils import tensor_split, tensor_cat, glow_logdet_forward, glow_logdet_backward


class CouplingLayerGlow(InvertibleLayer):
    def __init__(self, C, RB, logdet=False, activation='sigmoid'):
        """
        Affine coupling layer of Glow (Dinh et al. 2017, Kingma and Dhariwal 2018) preceded by an
        invertible 1x1 convolution. This computes the output :math:`Y` on forward given input :math:`X` according to:

        :math:`(X1, X2) = split(C(X))`

        :math:`(log(S), T) = split(RB(X2))`

        :math:`S = act(log(S))`

        :math:`Y1 = S * X1 + T`

        :math:`Y = (Y1, X2)`

        Parameters
        ----------
            C : :obj:`invnet.layers.Conv1x1`
                Invertible 1x1 convolution applied before the coupling.

            RB : :obj:`invnet.layers.residual.ConditionerBlock`
                Block mapping X2 to the stacked log-scale and shift. It must output twice the number of
                channels of X1, e.g. a ``ResidualBlock`` with ``fan=True``.

            logdet : :obj:`bool`
                Return the log-determinant of the coupling on forward.

            activation : :obj:`str` or :obj:`torch.nn.Module`
                Activation for the scale ['sigmoid', 'sigmoid2', 'exp']. Default = 'sigmoid'

        """
        super(CouplingLayerGlow, self).__init__()
        self.C = C
        self.RB = RB
        self.logdet = logdet
        self.activation = create_activation(activation)

    def _scale_shift(self, x2):
        log_s, t = tensor_split(self.RB(x2))
        return self.activation(log_s), t

    def forward(self, x):
        x1, x2 = tensor_split(self.C(x))
        s, t = self._scale_shift(x2)
        y1 = s * x1 + t
        y = tensor_cat(y1, x2)
        if self.logdet:
            return y, glow_logdet_forward(s)
        return y

    def inverse(self, y):
        y1, x2 = tensor_split(y)
        s, t = self._scale_shift(x2)
        x1 = (y1 - t) / (s + torch.finfo(y.dtype).eps)
        return self.C.inverse(tensor_cat(x1, x2))

    def _backward(self, dy, y, logdet_grad=None):
        # recompute the forward state from the output
        with torch.no_grad():
            y1, x2 = tensor_split(y)
            s, t = self._scale_shift(x2)
            x1 = (y1 - t) / (s + torch.finfo(y.dtype).eps)

            dy1, dy2 = tensor_split(dy, y1.shape[1])
            dt = dy1
            ds = dy1 * x1
            if logdet_grad is not None:
                ds = ds + logdet_grad * glow_logdet_backward(s)
            dx1 = dy1 * s
            dlog_s = self.activation.backward(ds, s)

        dx2, rb_grads = self.RB.backward(tensor_cat(dlog_s, dt), x2, set_grad=False)
        dx2 = dx2 + dy2
        dx, c_grads, x = self.C._backward(tensor_cat(dx1, dx2), tensor_cat(x1, x2))
        return dx, c_grads + rb_grads, x


def create_coupling_glow(n_in, n_hidden, k1=3, k2=1, p1=1, p2=0, s1=1, s2=1, logdet=False, activation='sigmoid',
                         ndims=2):
    """Build a ``CouplingLayerGlow`` with a 1x1 convolution and a residual block for n_in channels"""
    if n_in < 2:
        raise ValueError("A coupling layer needs at least 2 channels, got {}".format(n_in))
    split_num = int(round(n_in / 2))
    RB = ResidualBlock(n_in - split_num, n_hidden, n_out=2 * split_num, k1=k1, k2=k2, p1=p1, p2=p2, s1=s1, s2=s2,
                       fan=True, ndims=ndims)
    return CouplingLayerGlow(Conv1x1(n_in), RB, logdet=logdet, activation=activation)
