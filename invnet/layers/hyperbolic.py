import torch
import torch.nn as nn
import torch.nn.functional as F
from torch.nn.grad import conv2d_weight, conv3d_weight

from invnet.layers.base import InvertibleLayer
from invnet.layers.activations import relu_grad
from invnet.layers.squeeze import wavelet_squeeze, wavelet_unsqueeze
from invnet.layers.utils import channel_view, sum_except_channel


_conv = {2: F.conv2d, 3: F.conv3d}
_conv_transpose = {2: F.conv_transpose2d, 3: F.conv_transpose3d}
_conv_weight = {2: conv2d_weight, 3: conv3d_weight}
_scale = {0: 1., 1: 0.5, -1: 2.}


def _identity(x):
    return x


class HyperbolicLayer(InvertibleLayer):
    def __init__(self, n_in, kernel, stride, pad, action=0, alpha=1.0, n_hidden=None, ndims=2):
        """
        Hyperbolic layer of Lensink et al. (2019), a leapfrog discretization of a second order
        equation in the network depth:

        :math:`X_{new} = 2 X_{curr} - X_{prev} - \\alpha W^T ReLU(W X_{curr} + b)`

        The inverse solves the same relation for :math:`X_{prev}`, so the layer is invertible
        whatever the convolution weights are. The determinant of the update is one.

        Parameters
        ----------
            n_in : :obj:`int`
                Number of channels of each of the two input states.

            kernel, stride, pad : :obj:`int`
                Kernel size, stride and padding of the convolution W.

            action : :obj:`int`
                0 keeps the shapes, 1 applies a wavelet unsqueeze to the inputs before the update
                (channels divided by 4, or 8 in 3D) and -1 a wavelet squeeze (channels
                multiplied by 4, or 8 in 3D).

            alpha : :obj:`float`
                Step size of the update. Default = 1

            n_hidden : :obj:`int`, optional
                Number of output channels of W, defaults to the number of channels after the action.

            ndims : :obj:`int`
                Number of spatial dimensions, 2 or 3.

        """
        super(HyperbolicLayer, self).__init__()
        if action not in _scale:
            raise NotImplementedError('Unknown action: %s' % action)
        if ndims not in _conv:
            raise NotImplementedError('Unsupported number of dimensions: %s' % ndims)
        n_curr = int(n_in * _scale[action] ** ndims)
        if n_curr < 1 or n_curr != n_in * _scale[action] ** ndims:
            raise ValueError("Cannot apply action {} to {} channels".format(action, n_in))
        n_hidden = n_curr if n_hidden is None else n_hidden
        self.n_in = n_in
        self.n_curr = n_curr
        self.stride = stride
        self.pad = pad
        self.action = action
        self.alpha = float(alpha)
        self.ndims = ndims
        self.W = nn.Parameter(torch.empty((n_hidden, n_curr) + (kernel,) * ndims))
        self.b = nn.Parameter(torch.zeros(n_hidden))
        nn.init.xavier_uniform_(self.W)

        if action == 1:
            self._into, self._out_of = wavelet_unsqueeze, wavelet_squeeze
        elif action == -1:
            self._into, self._out_of = wavelet_squeeze, wavelet_unsqueeze
        else:
            self._into, self._out_of = _identity, _identity

    def _check(self, x):
        if x.dim() != self.ndims + 2:
            raise ValueError("Expected a {}D input, got shape {}".format(self.ndims + 2, tuple(x.shape)))

    def _conv(self, x, w):
        return _conv[self.ndims](x, w, stride=self.stride, padding=self.pad)

    def _conv_t(self, h, w, x):
        """Adjoint of ``_conv`` with respect to its input, producing a tensor shaped as x"""
        kernel = w.shape[2:]
        output_padding = [int(n) - ((int(m) - 1) * self.stride - 2 * self.pad + int(k))
                          for n, m, k in zip(x.shape[2:], h.shape[2:], kernel)]
        return _conv_transpose[self.ndims](h, w, stride=self.stride, padding=self.pad,
                                           output_padding=output_padding)

    def _conv_w(self, x, h):
        """Adjoint of ``_conv`` with respect to the weight"""
        return _conv_weight[self.ndims](x, self.W.shape, h, stride=self.stride, padding=self.pad)

    def _update(self, x_curr):
        x_conv = self._conv(x_curr, self.W) + channel_view(self.b, x_curr.dim())
        x_relu = F.relu(x_conv)
        return -self._conv_t(x_relu, self.W, x_curr), x_conv, x_relu

    def forward(self, x_prev, x_curr):
        self._check(x_curr)
        x_prev = self._into(x_prev)
        x_curr = self._into(x_curr)
        x_convt, _, _ = self._update(x_curr)
        x_new = 2 * x_curr - x_prev + self.alpha * x_convt
        return x_curr, x_new

    def inverse(self, x_curr, x_new):
        self._check(x_curr)
        x_convt, _, _ = self._update(x_curr)
        x_prev = 2 * x_curr - x_new + self.alpha * x_convt
        return self._out_of(x_prev), self._out_of(x_curr)

    def _backward(self, dx_curr, dx_new, x_curr, x_new):
        with torch.no_grad():
            x_convt, x_conv, x_relu = self._update(x_curr)
            x_prev = 2 * x_curr - x_new + self.alpha * x_convt

            dx_relu = -self.alpha * self._conv(dx_new, self.W)
            dW = -self.alpha * self._conv_w(dx_new, x_relu)
            dx_conv = relu_grad(dx_relu, x_conv)
            dx_curr = dx_curr + self._conv_t(dx_conv, self.W, x_curr) + 2 * dx_new
            dW = dW + self._conv_w(x_curr, dx_conv)
            db = sum_except_channel(dx_conv)
            dx_prev = -dx_new

        return (self._out_of(dx_prev), self._out_of(dx_curr), [dW, db],
                self._out_of(x_prev), self._out_of(x_curr))

    def backward(self, dx_curr, dx_new, x_curr, x_new):
        """
        Backpropagate through the layer and reconstruct its inputs

        Returns
        -------
            :obj:`tuple`
                ``(dx_prev, dx_curr, x_prev, x_curr)`` in the shape of the forward inputs. The
                gradients of W and b are accumulated.

        """
        dx_prev, dx_curr, dtheta, x_prev, x_curr = self._backward(dx_curr, dx_new, x_curr, x_new)
        self.accumulate_grad(dtheta)
        return dx_prev, dx_curr, x_prev, x_curr

    def adjoint_jacobian(self, dx_curr, dx_new, x_curr, x_new):
        """Returns ``(dx_prev, dx_curr, dtheta, x_prev, x_curr)``"""
        return self._backward(dx_curr, dx_new, x_curr, x_new)

    def jacobian(self, dx_prev, dx_curr, dtheta, x_prev, x_curr):
        """Returns ``(dx_curr, dx_new, x_curr, x_new)`` in the shape of the forward outputs"""
        self._check(x_curr)
        dW, db = (None, None) if dtheta is None else dtheta
        dW = torch.zeros_like(self.W) if dW is None else dW
        db = torch.zeros_like(self.b) if db is None else db
        with torch.no_grad():
            x_prev, x_curr = self._into(x_prev), self._into(x_curr)
            dx_prev, dx_curr = self._into(dx_prev), self._into(dx_curr)

            x_convt, x_conv, x_relu = self._update(x_curr)
            dx_conv = self._conv(dx_curr, self.W) + self._conv(x_curr, dW) + channel_view(db, x_curr.dim())
            dx_relu = relu_grad(dx_conv, x_conv)
            dx_convt = -self._conv_t(dx_relu, self.W, x_curr) - self._conv_t(x_relu, dW, x_curr)

            x_new = 2 * x_curr - x_prev + self.alpha * x_convt
            dx_new = 2 * dx_curr - dx_prev + self.alpha * dx_convt
        return dx_curr, dx_new, x_curr, x_new

    def extra_repr(self):
        return 'n_in={}, action={}, alpha={}, stride={}, pad={}'.format(self.n_in, self.action, self.alpha,
                                                                      self.stride, self.pad)
