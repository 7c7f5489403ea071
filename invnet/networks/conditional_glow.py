import logging
import torch
import torch.nn as nn

from invnet.layers.base import InvertibleLayer, vjp, module_jvp
from invnet.layers.actnorm import ActNorm
from invnet.layers.conditional_glow import ConditionalLayerGlow
from invnet.layers.squeeze import create_squeezer
from invnet.layers.utils import tensor_split, tensor_cat, cat_states, split_states
from invnet.networks.glow import scale_channels, latent_dims


logger = logging.getLogger('networks')


class NetworkConditionalGlow(InvertibleLayer):
    def __init__(self, n_in, n_cond, n_hidden, L, K, split_scales=False, summary_net=None, k1=3, k2=1, p1=1,
                 p2=0, s1=1, s2=1, squeezer='shuffle', activation='sigmoid', spade=False, ndims=2):
        """
        Conditional Glow network. Each flow step is an activation normalization followed by a
        conditional Glow coupling layer that sees the condition C. With ``split_scales`` the condition is
        squeezed alongside the state, but never split.

        Parameters
        ----------
            n_in, n_cond, n_hidden : :obj:`int`
                Number of input, condition and hidden channels. If a summary network is given, n_cond is
                the number of channels of its output.

            L, K : :obj:`int`
                Number of scales and number of flow steps per scale.

            split_scales : :obj:`bool`
                Squeeze and split between the scales.

            summary_net : :obj:`torch.nn.Module`, optional
                Network applied to the condition before it enters the flow. It is trained through regular
                ``torch.autograd`` with the condition gradient accumulated by ``backward``.

            k1, k2, p1, p2, s1, s2 : :obj:`int`
                Kernel sizes, paddings and strides of the residual blocks.

            squeezer : :obj:`str` or :obj:`torch.nn.Module`
                Squeezer used between scales. Default = 'shuffle'

            activation : :obj:`str` or :obj:`torch.nn.Module`
                Scale activation of the coupling layers. Default = 'sigmoid'

            spade : :obj:`bool`
                Let the coupling layers compute scale and shift from the condition alone.

            ndims : :obj:`int`
                Number of spatial dimensions.

        """
        super(NetworkConditionalGlow, self).__init__()
        self.L = L
        self.K = K
        self.split_scales = split_scales
        self.squeezer = create_squeezer(squeezer)
        self.logdet = True
        self.flows = nn.ModuleList()
        cond_factor = 2 ** ndims if split_scales else 1
        for n in scale_channels(n_in, L, split_scales, ndims):
            n_cond *= cond_factor
            for _ in range(K):
                self.flows.append(ActNorm(n, logdet=True))
                self.flows.append(ConditionalLayerGlow(n, n_cond, n_hidden, k1=k1, k2=k2, p1=p1, p2=p2, s1=s1,
                                                       s2=s2, logdet=True, activation=activation, spade=spade,
                                                       ndims=ndims))
        self.summary_net = summary_net
        logger.debug('Created NetworkConditionalGlow with {} scales of {} flow steps'.format(L, K))

    def steps(self, i):
        return self.flows[2 * i * self.K:2 * (i + 1) * self.K]

    def _condition(self, c):
        if self.summary_net is not None:
            c = self.summary_net(c)
        return c

    def _flow_params(self):
        return [p for layer in self.flows for p in layer.get_params()]

    def forward(self, x, c):
        """Returns ``(Z, C_out, logdet)`` where C_out is the condition as seen by the last scale"""
        c = self._condition(c)
        orig_shape = x.shape
        z_save = []
        logdet = 0
        for i in range(self.L):
            if self.split_scales:
                x = self.squeezer.forward(x)
                c = self.squeezer.forward(c)
            for an, cl in zip(self.steps(i)[0::2], self.steps(i)[1::2]):
                x, logdet1 = an.forward(x)
                x, logdet2 = cl.forward(x, c)
                logdet = logdet + logdet1 + logdet2
            if self.split_scales and i < self.L - 1:
                x, z = tensor_split(x)
                z_save.append(z)
        if self.split_scales:
            x = cat_states(z_save, x).reshape(orig_shape)
        return x, c, logdet

    def inverse(self, z, c):
        """Inverse given the condition C_out returned by ``forward``"""
        if self.split_scales:
            z_save, x = split_states(z, latent_dims(z.shape, self.L, self.split_scales))
        else:
            x = z
        for i in reversed(range(self.L)):
            if self.split_scales and i < self.L - 1:
                x = tensor_cat(x, z_save[i])
            for an, cl in zip(reversed(self.steps(i)[0::2]), reversed(self.steps(i)[1::2])):
                x = cl.inverse(x, c)
                x = an.inverse(x)
            if self.split_scales:
                x = self.squeezer.inverse(x)
                c = self.squeezer.inverse(c)
        return x

    def _reverse_pass(self, dz, z, c, an_fn, cl_fn):
        """Walk the flow from Z back to X, returns ``(dx, x, dc)`` with dc at the resolution of the input"""
        orig_shape = z.shape
        if self.split_scales:
            dims = latent_dims(orig_shape, self.L, self.split_scales)
            dz_save, dx = split_states(dz, dims)
            z_save, x = split_states(z, dims)
        else:
            dx, x = dz, z
        dc_total = torch.zeros_like(c)
        for i in reversed(range(self.L)):
            if self.split_scales and i < self.L - 1:
                x = tensor_cat(x, z_save[i])
                dx = tensor_cat(dx, dz_save[i])
            for an, cl in zip(reversed(self.steps(i)[0::2]), reversed(self.steps(i)[1::2])):
                dx, x, dc = cl_fn(cl, dx, x, c)
                dx, x = an_fn(an, dx, x)
                dc_total = dc_total + dc
            if self.split_scales:
                x = self.squeezer.inverse(x)
                dx = self.squeezer.inverse(dx)
                c = self.squeezer.inverse(c)
                dc_total = self.squeezer.inverse(dc_total)
        return dx, x, dc_total

    def backward(self, dz, z, c, c_in=None):
        """
        Backpropagate dz through the network

        Parameters
        ----------
            dz, z : :obj:`torch.Tensor`
                Gradient with respect to the latent variable and the latent variable itself.

            c : :obj:`torch.Tensor`
                Condition C_out returned by ``forward``.

            c_in : :obj:`torch.Tensor`, optional
                Condition that was passed to ``forward``, required to train the summary network.

        Returns
        -------
            :obj:`tuple`
                ``(dx, x)``. The parameter gradients of the flow and of the summary network are accumulated.

        Raises
        ------
        ValueError
            If the network has a summary network and c_in is not given.

        """
        if self.summary_net is not None and c_in is None:
            raise ValueError("The condition passed to forward (c_in) is required to train the summary network")
        dx, x, dc_total = self._reverse_pass(dz, z, c, lambda an, dx, x: an.backward(dx, x),
                                             lambda cl, dx, x, c: cl.backward(dx, x, c))
        if self.summary_net is not None:
            with torch.enable_grad():
                c_out = self.summary_net(c_in)
            torch.autograd.backward(c_out, dc_total)
        return dx, x

    def adjoint_jacobian(self, dz, z, c, c_in=None):
        """
        Transposed Jacobian applied to dz, leaves ``param.grad`` as is

        Returns
        -------
            :obj:`tuple`
                ``(dx, dtheta, x, dc)`` with dtheta aligned with ``get_params()``. dc is the gradient with
                respect to the condition passed to ``forward`` (c_in if there is a summary network).

        """
        if self.summary_net is not None and c_in is None:
            raise ValueError("The condition passed to forward (c_in) is required by the summary network")
        grads = []

        def an_step(an, dx, x):
            dx, dtheta, x = an.adjoint_jacobian(dx, x)
            grads.append(dtheta)
            return dx, x

        def cl_step(cl, dx, x, c):
            dx, dtheta, x, dc = cl.adjoint_jacobian(dx, x, c)
            grads.append(dtheta)
            return dx, x, dc

        dx, x, dc = self._reverse_pass(dz, z, c, an_step, cl_step)
        dtheta = []
        for g in reversed(grads):
            dtheta += list(g)
        if self.summary_net is not None:
            (dc,), summary_grads = vjp(self.summary_net, (c_in,), (dc,), self.summary_net.parameters())
            dtheta += summary_grads
        return dx, dtheta, x, dc

    def jacobian(self, dx, dtheta, x, c, dc=None):
        """
        Directional derivative of the forward pass along dx, dtheta and an optional condition perturbation dc

        Returns ``(dz, z, logdet, dlogdet)``. dtheta is aligned with ``get_params()``.
        """
        n_flow = len(self._flow_params())
        chunks = self._split_dtheta(None if dtheta is None else dtheta[:n_flow], list(self.flows))
        if self.summary_net is not None:
            dtheta_summary = None if dtheta is None else dtheta[n_flow:]
            (c,), (dc,) = module_jvp(self.summary_net, (c,), (dc,), dtheta_summary)
        elif dc is None:
            dc = torch.zeros_like(c)
        orig_shape = x.shape
        dz_save, z_save = [], []
        logdet, dlogdet = 0, 0
        for i in range(self.L):
            if self.split_scales:
                x, dx = self.squeezer.forward(x), self.squeezer.forward(dx)
                c, dc = self.squeezer.forward(c), self.squeezer.forward(dc)
            for n, layer in enumerate(self.steps(i)):
                dtheta_ = chunks[2 * i * self.K + n]
                if n % 2 == 0:
                    dx, x, logdet_, dlogdet_ = layer.jacobian(dx, dtheta_, x)
                else:
                    dx, x, logdet_, dlogdet_ = layer.jacobian(dx, dtheta_, x, c, dc)
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
