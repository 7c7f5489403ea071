import torch.nn as nn
import torch.nn.functional as F

from invnet.layers.base import Layer, vjp, module_jvp


_conv = {1: nn.Conv1d, 2: nn.Conv2d, 3: nn.Conv3d}
_conv_transpose = {1: nn.ConvTranspose1d, 2: nn.ConvTranspose2d, 3: nn.ConvTranspose3d}


class ConditionerBlock(Layer):
    """Non-invertible block that computes the scale and shift of a coupling layer.

    Derivatives are obtained by differentiating a local recomputation of ``forward``; the block
    input is always available to the coupling layer (it passes through unchanged), so nothing
    is cached between the passes.
    """

    def backward(self, dy, x, set_grad=True):
        """Returns ``dx`` and accumulates the parameter gradients, or ``(dx, dtheta)`` if not ``set_grad``"""
        (dx,), dtheta = vjp(self.forward, (x,), (dy,), self.get_params())
        if set_grad:
            self.accumulate_grad(dtheta)
            return dx
        return dx, dtheta

    def jacobian(self, dx, dtheta, x):
        outputs, doutputs = module_jvp(self, (x,), (dx,), dtheta)
        return doutputs[0], outputs[0]

    def adjoint_jacobian(self, dy, x):
        return self.backward(dy, x, set_grad=False)


class ResidualBlock(ConditionerBlock):
    def __init__(self, n_in, n_hidden, n_out=None, k1=3, k2=3, p1=1, p2=1, s1=1, s2=1, fan=False, ndims=2):
        """
        Residual block used as the conditioner of the coupling layers

        :math:`H_1 = ReLU(W_1 * X + b_1)`

        :math:`H_2 = ReLU(H_1 + W_2 * H_1 + b_2)`

        :math:`Y = W_3^T * H_2 + b_3`

        where the last operation is a transposed convolution restoring the spatial size of X.

        Parameters
        ----------
            n_in, n_hidden : :obj:`int`
                Number of input and hidden channels.

            n_out : :obj:`int`, optional
                Number of output channels, defaults to n_in.

            k1, p1, s1 : :obj:`int`
                Kernel size, padding and stride of the first and the (transposed) last convolution.

            k2, p2, s2 : :obj:`int`
                Kernel size, padding and stride of the middle convolution, must preserve the
                spatial size.

            fan : :obj:`bool`
                Return the raw output of the last convolution. If not set a ReLU is applied.

            ndims : :obj:`int`
                Number of spatial dimensions (1 for dense signals, 2 for images, 3 for volumes).

        """
        super(ResidualBlock, self).__init__()
        if ndims not in _conv:
            raise NotImplementedError('Unsupported number of dimensions: %s' % ndims)
        if s2 != 1 or 2 * p2 != k2 - 1:
            raise ValueError("The middle convolution must preserve the spatial size, "
                             "got k2={}, p2={}, s2={}".format(k2, p2, s2))
        n_out = n_in if n_out is None else n_out
        self.n_in = n_in
        self.n_out = n_out
        self.fan = fan
        self.conv1 = _conv[ndims](n_in, n_hidden, k1, stride=s1, padding=p1)
        self.conv2 = _conv[ndims](n_hidden, n_hidden, k2, stride=s2, padding=p2)
        self.conv3 = _conv_transpose[ndims](n_hidden, n_out, k1, stride=s1, padding=p1)

    def forward(self, x):
        h1 = F.relu(self.conv1(x))
        h2 = F.relu(h1 + self.conv2(h1))
        y = self.conv3(h2, output_size=list(x.shape[2:]))
        if self.fan:
            return y
        return F.relu(y)


class ModuleBlock(ConditionerBlock):
    """Wraps an arbitrary torch.nn.Module (e.g. a dense network) as a conditioner"""
    def __init__(self, module):
        super(ModuleBlock, self).__init__()
        self.module = module

    def forward(self, x):
        return self.module(x)
