import torch

from invnet.layers.base import InvertibleLayer, module_jvp
from invnet.layers.activations import create_activation
from invnet.layers.conv1x1 import Conv1x1
from invnet.layers.residual import ResidualBlock
from invnet.layers.utils import tensor_split, tensor_cat, glow_logdet_forward, glow_logdet_backward


class CondCouplingLayerSpade(InvertibleLayer):
    def __init__(self, n_in, n_cond, n_hidden, k1=3, k2=1, p1=1, p2=0, s1=1, s2=1, logdet=False,
                 activation='sigmoid', ndims=2):
        """
        Spatially adaptive conditional affine layer. The whole input is modulated by a scale and
        a shift that only depend on the condition:

        :math:`X' = C_{1x1}(X)`

        :math:`(log(S), T) = split(RB(Cond))`

        :math:`Y = act(log(S)) * X' + T`

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

            ndims : :obj:`int`
                Number of spatial dimensions.

        """
        super(CondCouplingLayerSpade, self).__init__()
        self.C = Conv1x1(n_in)
        self.RB = ResidualBlock(n_cond, n_hidden, n_out=2 * n_in, k1=k1, k2=k2, p1=p1, p2=p2, s1=s1, s2=s2,
                                fan=True, ndims=ndims)
        self.logdet = logdet
        self.activation = create_activation(activation)

    def _scale_shift(self, cond):
        log_s, t = tensor_split(self.RB(cond))
        return self.activation(log_s), t

    def forward(self, x, cond):
        s, t = self._scale_shift(cond)
        y = s * self.C(x) + t
        if self.logdet:
            return y, glow_logdet_forward(s)
        return y

    def inverse(self, y, cond):
        s, t = self._scale_shift(cond)
        return self.C.inverse((y - t) / (s + torch.finfo(y.dtype).eps))

    def _backward(self, dy, y, cond, logdet_grad=None):
        with torch.no_grad():
            s, t = self._scale_shift(cond)
            x_ = (y - t) / (s + torch.finfo(y.dtype).eps)
            ds = dy * x_
            if logdet_grad is not None:
                ds = ds + logdet_grad * glow_logdet_backward(s)
            dx_ = dy * s
            dlog_s = self.activation.backward(ds, s)

        dcond, rb_grads = self.RB.backward(tensor_cat(dlog_s, dy), cond, set_grad=False)
        dx, c_grads, x = self.C._backward(dx_, x_)
        return dx, c_grads + rb_grads, x, dcond

    def backward(self, dy, y, cond):
        """Returns ``(dx, x, dcond)`` and accumulates the parameter gradients"""
        dx, dtheta, x, dcond = self._backward(dy, y, cond, logdet_grad=self.logdet_grad())
        self.accumulate_grad(dtheta)
        return dx, x, dcond

    def adjoint_jacobian(self, dy, y, cond):
        """Returns ``(dx, dtheta, x, dcond)``"""
        return self._backward(dy, y, cond)

    def jacobian(self, dx, dtheta, x, cond, dcond=None):
        outputs, doutputs = module_jvp(self, (x, cond), (dx, dcond), dtheta)
        if self.logdet:
            return doutputs[0], outputs[0], outputs[1], doutputs[1]
        return doutputs[0], outputs[0]
