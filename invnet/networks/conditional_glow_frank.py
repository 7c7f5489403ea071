import logging
import torch
import torch.nn as nn

from invnet.layers.base import InvertibleLayer, vjp, module_jvp
from invnet.layers.actnorm import ActNorm
from invnet.layers.coupling_glow import create_coupling_glow
from invnet.layers.conditional_glow import ConditionalLayerGlow
from invnet.layers.squeeze import create_squeezer
from invnet.layers.utils import tensor_split, tensor_cat, cat_states, split_states
from invnet.networks.glow import scale_channels, latent_dims


logger = logging.getLogger('networks')


class NetworkConditionalGlowFrank(InvertibleLayer):
    def __init__(self, n_in, n_cond, n_hidden, L, K, cond=False, summary_net=None, spade=False, split_scales=False,
                 k1=3, k2=1, p1=1, p2=0, s1=1, s2=1, squeezer='shuffle', activation='sigmoid', ndims=2):
        """
        Glow network whose flow steps can be extended with a conditional coupling. Every flow step is an
        activation normalization followed by an unconditional Glow coupling layer. With ``cond`` each step
        continues with a second activation normalization and a conditional Glow coupling layer that sees
        the condition C.

        Parameters
        ----------
            n_in, n_cond, n_hidden : :obj:`int`
                Number of input, condition and hidden channels.

            L, K : :obj:`int`
                Number of scales and number of flow steps per scale.

            cond : :obj:`bool`
                Add the conditional coupling to every flow step. Without it the network is an
                unconditional Glow and the condition arguments are not used.

            summary_net : :obj:`torch.nn.Module`, optional
                Network applied to the condition before it enters the flow, only used with ``cond``.

            spade : :obj:`bool`
                Let the conditional coupling layers compute scale and shift from the condition alone.

            split_scales : :obj:`bool`
                Squeeze and split between the scales. The condition is squeezed alongside the state.

            k1, k2, p1, p2, s1, s2 : :obj:`int`
                Kernel sizes, paddings and strides of the residual blocks.

            squeezer : :obj:`str` or :obj:`torch.nn.Module`
                Squeezer used between scales. Default = 'shuffle'

            activation : :obj:`str` or :obj:`torch.nn.Module`
                Scale activation of the coupling layers. Default = 'sigmoid'

            ndims : :obj:`int`
                Number of spatial dimensions.

        Raises
        ------
        ValueError
            If a summary network is given without ``cond``.

        """
        super(NetworkConditionalGlowFrank, self).__init__()
        if summary_net is not None and not cond:
            raise ValueError("A summary network requires cond=True")
        self.L = L
        self.K = K
        self.cond = cond
        self.split_scales = split_scales
        self.squeezer = create_squeezer(squeezer)
        self.logdet = True
        self.flows = nn.ModuleList()
        cond_factor = 2 ** ndims if split_scales else 1
        kwargs = dict(k1=k1, k2=k2, p1=p1, p2=p2, s1=s1, s2=s2, logdet=True, activation=activation, ndims=ndims)
        for n in scale_channels(n_in, L, split_scales, ndims):
            n_cond *= cond_factor
            for _ in range(K):
                self.flows.append(ActNorm(n, logdet=True))
                self.flows.append(create_coupling_glow(n, n_hidden, **kwargs))
                if cond:
                    self.flows.append(ActNorm(n, logdet=True))
                    self.flows.append(ConditionalLayerGlow(n, n_cond, n_hidden, spade=spade, **kwargs))
        self.summary_net = summary_net
        logger.debug('Created NetworkConditionalGlowFrank with {} scales of {} flow steps (cond={})'.format(
            L, K, cond))

    @property
    def step_size(self):
        return 4 if self.cond else 2

    def steps(self, i):
        """Layers of scale i in the order of the forward pass"""
        n = self.step_size * self.K
        return self.flows[i * n:(i + 1) * n]

    def _check_condition(self, c):
        if self.cond and c is None:
            raise ValueError("The network was built with cond=True and needs a condition")

    def forward(self, x, c=None):
        """Returns ``(Z, C_out, logdet)`` with ``cond`` and ``(Z, logdet)`` otherwise"""
        self._check_condition(c)
        if self.cond and self.summary_net is not None:
            c = self.summary_net(c)
        orig_shape = x.shape
        z_save = []
        logdet = 0
        for i in range(self.L):
            if self.split_scales:
                x = self.squeezer.forward(x)
                if self.cond:
                    c = self.squeezer.forward(c)
            for layer in self.steps(i):
                if isinstance(layer, ConditionalLayerGlow):
                    x, logdet_ = layer.forward(x, c)
                else:
                    x, logdet_ = layer.forward(x)
                logdet = logdet + logdet_
            if self.split_scales and i < self.L - 1:
                x, z = tensor_split(x)
                z_save.append(z)
        if self.split_scales:
            x = cat_states(z_save, x).reshape(orig_shape)
        if self.cond:
            return x, c, logdet
        return x, logdet

    def inverse(self, z, c=None):
        """Inverse given the condition C_out returned by ``forward``"""
        self._check_condition(c)
        if self.split_scales:
            z_save, x = split_states(z, latent_dims(z.shape, self.L, self.split_scales))
        else:
            x = z
        for i in reversed(range(self.L)):
            if self.split_scales and i < self.L - 1:
                x = tensor_cat(x, z_save[i])
            for layer in reversed(self.steps(i)):
                if isinstance(layer, ConditionalLayerGlow):
                    x = layer.inverse(x, c)
                else:
                    x = layer.inverse(x)
            if self.split_scales:
                x = self.squeezer.inverse(x)
                if self.cond:
                    c = self.squeezer.inverse(c)
        return x

    def _reverse_pass(self, dz, z, c, layer_fn):
        """``layer_fn(layer, dx, x, c)`` returns ``(dx, x, dc)`` with dc None for unconditional layers"""
        if self.split_scales:
            dims = latent_dims(z.shape, self.L, self.split_scales)
            dz_save, dx = split_states(dz, dims)
            z_save, x = split_states(z, dims)
        else:
            dx, x = dz, z
        dc_total = torch.zeros_like(c) if self.cond else None
        for i in reversed(range(self.L)):
            if self.split_scales and i < self.L - 1:
                x = tensor_cat(x, z_save[i])
                dx = tensor_cat(dx, dz_save[i])
            for layer in reversed(self.steps(i)):
                dx, x, dc = layer_fn(layer, dx, x, c)
                if dc is not None:
                    dc_total = dc_total + dc
            if self.split_scales:
                x = self.squeezer.inverse(x)
                dx = self.squeezer.inverse(dx)
                if self.cond:
                    c = self.squeezer.inverse(c)
                    dc_total = self.squeezer.inverse(dc_total)
        return dx, x, dc_total

    def backward(self, dz, z, c=None, c_in=None):
        """
        Backpropagate dz through the network

        Parameters
        ----------
            dz, z : :obj:`torch.Tensor`
                Gradient with respect to the latent variable and the latent variable itself.

            c : :obj:`torch.Tensor`, optional
                Condition C_out returned by ``forward``, required with ``cond``.

            c_in : :obj:`torch.Tensor`, optional
                Condition that was passed to ``forward``, required to train the summary network.

        Returns
        -------
            :obj:`tuple`
                ``(dx, x)``. The parameter gradients are accumulated, the condition gradient summed over all
                conditional layers is pushed into the summary network.

        """
        self._check_condition(c)
        if self.summary_net is not None and c_in is None:
            raise ValueError("The condition passed to forward (c_in) is required to train the summary network")

        def step(layer, dx, x, c):
            if isinstance(layer, ConditionalLayerGlow):
                return layer.backward(dx, x, c)
            dx, x = layer.backward(dx, x)
            return dx, x, None

        dx, x, dc_total = self._reverse_pass(dz, z, c, step)
        if self.summary_net is not None:
            with torch.enable_grad():
                c_out = self.summary_net(c_in)
            torch.autograd.backward(c_out, dc_total)
        return dx, x

    def adjoint_jacobian(self, dz, z, c=None, c_in=None):
        """Returns ``(dx, dtheta, x)``, or ``(dx, dtheta, x, dc)`` with ``cond``; dtheta follows ``get_params()``"""
        self._check_condition(c)
        if self.summary_net is not None and c_in is None:
            raise ValueError("The condition passed to forward (c_in) is required by the summary network")
        grads = []

        def step(layer, dx, x, c):
            if isinstance(layer, ConditionalLayerGlow):
                dx, dtheta, x, dc = layer.adjoint_jacobian(dx, x, c)
            else:
                (dx, dtheta, x), dc = layer.adjoint_jacobian(dx, x), None
            grads.append(dtheta)
            return dx, x, dc

        dx, x, dc = self._reverse_pass(dz, z, c, step)
        dtheta = []
        for g in reversed(grads):
            dtheta += list(g)
        if not self.cond:
            return dx, dtheta, x
        if self.summary_net is not None:
            (dc,), summary_grads = vjp(self.summary_net, (c_in,), (dc,), self.summary_net.parameters())
            dtheta += summary_grads
        return dx, dtheta, x, dc

    def jacobian(self, dx, dtheta, x, c=None, dc=None):
        """Returns ``(dz, z, logdet, dlogdet)`` for perturbations of the input, the parameters and the condition"""
        self._check_condition(c)
        n_flow = sum([len(layer.get_params()) for layer in self.flows])
        chunks = self._split_dtheta(None if dtheta is None else dtheta[:n_flow], list(self.flows))
        if self.cond:
            if self.summary_net is not None:
                (c,), (dc,) = module_jvp(self.summary_net, (c,), (dc,), None if dtheta is None else dtheta[n_flow:])
            elif dc is None:
                dc = torch.zeros_like(c)
        orig_shape = x.shape
        dz_save, z_save = [], []
        logdet, dlogdet = 0, 0
        offset = 0
        for i in range(self.L):
            if self.split_scales:
                x, dx = self.squeezer.forward(x), self.squeezer.forward(dx)
                if self.cond:
                    c, dc = self.squeezer.forward(c), self.squeezer.forward(dc)
            for layer in self.steps(i):
                if isinstance(layer, ConditionalLayerGlow):
                    dx, x, logdet_, dlogdet_ = layer.jacobian(dx, chunks[offset], x, c, dc)
                else:
                    dx, x, logdet_, dlogdet_ = layer.jacobian(dx, chunks[offset], x)
                offset += 1
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
