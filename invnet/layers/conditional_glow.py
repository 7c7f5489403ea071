import torch

from invnet.layers.base import InvertibleLayer, module_jvp
from invnet.layers.activations import create_activation
from invnet.layers.conv1x1 import Conv1x1
from invnet.layers.residual import ResidualBlock
from invnet.layers.utils import tensor_split, tensor_cat, glow_logdet_forward, glow_logdet_backward


class ConditionalLayerGlow(InvertibleLayer):
    def __init__(self, n_in, n_cond, n_hidden, k1=3, k2=1, p1=1, p2=0, s1=1, s2=1, logdet=False,
                 activation='sigmoid', spade=False, ndims=2):
        """
        Conditional Glow coupling: the residual block sees the untouched half of the input
        concatenated with the condition C, or only the condition when ``spade`` is set.

        :math:`(X1, X2) = split(C_{1x1}(X))`

        :math:`(log(S), T) = split(RB(X2, C))`

        :math:`Y = (act(log(S)) * X1 + T, X2)`

        Parameters
        ----------
            n_in, n_cond, n_hidden : :obj:`int`
                Number of input, condition and hidden channels.

            k1, k2, p1, p2, s1, s2 : :obj:`int`
                Kernel sizes, paddings and strides of the residual block.

            logdet : :obj:`bool`
                Return the log-determinant on forward.

            activation : :obj:`str` or :obj:`torch.nn.Module`
                Activation for the scale. Default = 'sigmoid'

            spade : :obj:`bool`
                Compute the scale and shift from the condition alone (spatially adaptive
                normalization), X2 then passes through unchanged without entering the residual block.

            ndims : :obj:`int`
                Number of spatial dimensions.

        """
        super(ConditionalLayerGlow, self).__init__()
        if n_in < 2:
            raise ValueError("A coupling layer needs at least 2 channels, got {}".format(n_in))
        self.split_num = int(round(n_in / 2))
        self.n_cond = n_cond
        self.C = Conv1x1(n_in)
        self.spade = spade
        n_rb = n_cond if spade else n_in - self.split_num + n_cond
        self.RB = ResidualBlock(n_rb, n_hidden, n_out=2 * self.split_num,
                                k1=k1, k2=k2, p1=p1, p2=p2, s1=s1, s2=s2, fan=True, ndims=ndims)
        self.logdet = logdet
        self.activation = create_activation(activation)

    def _scale_shift(self, x2, c):
        log_s, t = tensor_split(self.RB(c if self.spade else tensor_cat(x2, c)))
        return self.activation(log_s), t

    def forward(self, x, c):
        x1, x2 = tensor_split(self.C(x))
        s, t = self._scale_shift(x2, c)
        y = tensor_cat(s * x1 + t, x2)
        if self.logdet:
            return y, glow_logdet_forward(s)
        return y

    def inverse(self, y, c):
        y1, x2 = tensor_split(y)
        s, t = self._scale_shift(x2, c)
        x1 = (y1 - t) / (s + torch.finfo(y.dtype).eps)
        return self.C.inverse(tensor_cat(x1, x2))

    def _backward(self, dy, y, c, logdet_grad=None):
        with torch.no_grad():
            y1, x2 = tensor_split(y)
            s, t = self._scale_shift(x2, c)
            x1 = (y1 - t) / (s + torch.finfo(y.dtype).eps)

            dy1, dy2 = tensor_split(dy, y1.shape[1])
            ds = dy1 * x1
            if logdet_grad is not None:
                ds = ds + logdet_grad * glow_logdet_backward(s)
            dx1 = dy1 * s
            dlog_s = self.activation.backward(ds, s)

        if self.spade:
            dc, rb_grads = self.RB.backward(tensor_cat(dlog_s, dy1), c, set_grad=False)
            dx2 = torch.zeros_like(x2)
        else:
            drb, rb_grads = self.RB.backward(tensor_cat(dlog_s, dy1), tensor_cat(x2, c), set_grad=False)
            dx2, dc = tensor_split(drb, x2.shape[1])
        dx, c_grads, x = self.C._backward(tensor_cat(dx1, dx2 + dy2), tensor_cat(x1, x2))
        return dx, c_grads + rb_grads, x, dc

    def backward(self, dy, y, c):
        """Returns ``(dx, x, dc)`` and accumulates the parameter gradients"""
        dx, dtheta, x, dc = self._backward(dy, y, c, logdet_grad=self.logdet_grad())
        self.accumulate_grad(dtheta)
        return dx, x, dc

    def adjoint_jacobian(self, dy, y, c):
        """Returns ``(dx, dtheta, x, dc)``"""
        return self._backward(dy, y, c)

    def jacobian(self, dx, dtheta, x, c, dc=None):
        outputs, doutputs = module_jvp(self, (x, c), (dx, dc), dtheta)
        if self.logdet:
            return doutputs[0], outputs[0], outputs[1], doutputs[1]
        return doutputs[0], outputs[0]
