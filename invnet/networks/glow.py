import logging
import torch
import torch.nn as nn

from invnet.layers.base import InvertibleLayer
from invnet.layers.actnorm import ActNorm
from invnet.layers.coupling_glow import create_coupling_glow
from invnet.layers.squeeze import create_squeezer
from invnet.layers.utils import tensor_split, tensor_cat, cat_states, split_states


logger = logging.getLogger('networks')


def scale_channels(n_in, L, split_scales, ndims):
    """Number of channels seen by the flow steps of every scale"""
    factor = 2 ** ndims if split_scales else 1
    channels = []
    for i in range(L):
        n_in *= factor
        channels.append(n_in)
        if split_scales and i < L - 1:
            n_in = int(round(n_in / 2))
    return channels


def latent_dims(shape, L, split_scales):
    """Shapes (without batch) of the factored out latents and of the final state for an input shape"""
    shape = list(shape[1:])
    if not split_scales:
        return [tuple(shape)]
    nd = len(shape) - 1
    dims = []
    for i in range(L):
        if any(s % 2 != 0 for s in shape[1:]):
            raise ValueError("Spatial size {} cannot be squeezed at scale {}".format(tuple(shape[1:]), i))
        shape = [shape[0] * 2 ** nd] + [s // 2 for s in shape[1:]]
        if i < L - 1:
            keep = int(round(shape[0] / 2))
            dims.append(tuple([shape[0] - keep] + shape[1:]))
            shape = [keep] + shape[1:]
    dims.append(tuple(shape))
    return dims


class NetworkGlow(InvertibleLayer):
    def __init__(self, n_in, n_hidden, L, K, split_scales=False, k1=3, k2=1, p1=1, p2=0, s1=1, s2=1,
                 squeezer='shuffle', activation='sigmoid', ndims=2):
        """
        Multiscale Glow network (Kingma and Dhariwal, 2018). Every scale performs K flow steps, each an
        activation normalization followed by a Glow coupling layer.

        With ``split_scales`` every scale squeezes its input first and factors out half of the channels
        afterwards (except the last scale). The latent variable Z is returned in the shape of the input.

        Parameters
        ----------
            n_in, n_hidden : :obj:`int`
                Number of input channels and hidden channels of the residual blocks.

            L, K : :obj:`int`
                Number of scales and number of flow steps per scale.

            split_scales : :obj:`bool`
                Squeeze and split between the scales.

            k1, k2, p1, p2, s1, s2 : :obj:`int`
                Kernel sizes, paddings and strides of the residual blocks.

            squeezer : :obj:`str` or :obj:`torch.nn.Module`
                Squeezer used between scales ['shuffle', 'checkerboard', 'wavelet']. Default = 'shuffle'

            activation : :obj:`str` or :obj:`torch.nn.Module`
                Scale activation of the coupling layers. Default = 'sigmoid'

            ndims : :obj:`int`
                Number of spatial dimensions.

        """
        super(NetworkGlow, self).__init__()
        self.L = L
        self.K = K
        self.split_scales = split_scales
        self.squeezer = create_squeezer(squeezer)
        self.logdet = True
        self.flows = nn.ModuleList()
        for n in scale_channels(n_in, L, split_scales, ndims):
            for _ in range(K):
                self.flows.append(ActNorm(n, logdet=True))
                self.flows.append(create_coupling_glow(n, n_hidden, k1=k1, k2=k2, p1=p1, p2=p2, s1=s1, s2=s2,
                                                       logdet=True, activation=activation, ndims=ndims))
        logger.debug('Created NetworkGlow with {} scales of {} flow steps'.format(L, K))

    def steps(self, i):
        """Layers of scale i in the order of the forward pass"""
        return self.flows[2 * i * self.K:2 * (i + 1) * self.K]

    def forward(self, x):
        orig_shape = x.shape
        z_save = []
        logdet = 0
        for i in range(self.L):
            if self.split_scales:
                x = self.squeezer.forward(x)
            for layer in self.steps(i):
                x, logdet_ = layer.forward(x)
                logdet = logdet + logdet_
            if self.split_scales and i < self.L - 1:
                x, z = tensor_split(x)
                z_save.append(z)
        if self.split_scales:
            x = cat_states(z_save, x).reshape(orig_shape)
        return x, logdet

    def inverse(self, z):
        if self.split_scales:
            z_save, x = split_states(z, latent_dims(z.shape, self.L, self.split_scales))
        else:
            x = z
        for i in reversed(range(self.L)):
            if self.split_scales and i < self.L - 1:
                x = tensor_cat(x, z_save[i])
            for layer in reversed(self.steps(i)):
                x = layer.inverse(x)
            if self.split_scales:
                x = self.squeezer.inverse(x)
        return x

    def _reverse_pass(self, dz, z, layer_fn):
        """Walk the network from the output to the input, ``layer_fn(layer, dx, x)`` returns ``(dx, x)``"""
        orig_shape = z.shape
        if self.split_scales:
            dims = latent_dims(orig_shape, self.L, self.split_scales)
            dz_save, dx = split_states(dz, dims)
            z_save, x = split_states(z, dims)
        else:
            dx, x = dz, z
        for i in reversed(range(self.L)):
            if self.split_scales and i < self.L - 1:
                x = tensor_cat(x, z_save[i])
                dx = tensor_cat(dx, dz_save[i])
            for layer in reversed(self.steps(i)):
                dx, x = layer_fn(layer, dx, x)
            if self.split_scales:
                x = self.squeezer.inverse(x)
                dx = self.squeezer.inverse(dx)
        return dx, x

    def backward(self, dz, z):
        """Backpropagate dz (the gradient of the loss with respect to Z) through the network

        The gradient of ``-logdet`` is included. Returns ``(dx, x)`` and accumulates the gradients of all
        parameters.
        """
        return self._reverse_pass(dz, z, lambda layer, dx, x: layer.backward(dx, x))

    def adjoint_jacobian(self, dz, z):
        """Returns ``(dx, dtheta, x)`` with dtheta aligned with ``get_params()``"""
        grads = []

        def step(layer, dx, x):
            dx, dtheta, x = layer.adjoint_jacobian(dx, x)
            grads.append(dtheta)
            return dx, x

        dx, x = self._reverse_pass(dz, z, step)
        dtheta = []
        for g in reversed(grads):
            dtheta += list(g)
        return dx, dtheta, x

    def jacobian(self, dx, dtheta, x):
        """Returns ``(dz, z, logdet, dlogdet)`` for the perturbations dx and dtheta"""
        orig_shape = x.shape
        chunks = self._split_dtheta(dtheta, list(self.flows))
        dz_save, z_save = [], []
        logdet, dlogdet = 0, 0
        for i in range(self.L):
            if self.split_scales:
                x = self.squeezer.forward(x)
                dx = self.squeezer.forward(dx)
            for n, layer in enumerate(self.steps(i)):
                dx, x, logdet_, dlogdet_ = layer.jacobian(dx, chunks[2 * i * self.K + n], x)
                logdet = logdet + logdet_
                dlogdet = dlogdet + dlogdet_
            if self.split_scales and i < self.L - 1:
                x, z = tensor_split(x)
                dx, dz = tensor_split(dx)
                z_save.append(z)
                dz_save.append(dz)
        if self.split_scales:
            x = cat_states(z_save, x).reshape(orig_shape)
            dx = cat_states(dz_save, dx).reshape(orig_shape)
        return dx, x, logdet, dlogdet

    def sample(self, n, shape, temperature=1.0, device=None):
        """Draw n samples by pushing standard normal latents of the given (C, *spatial) shape through the inverse"""
        with torch.no_grad():
            z = temperature * torch.randn((n,) + tuple(shape), device=device,
                                          dtype=self.flows[0].s.dtype)
            return self.inverse(z)
