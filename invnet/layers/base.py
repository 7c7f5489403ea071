import torch
import torch.nn as nn
from torch.func import functional_call, jvp


def _as_tuple(x):
    if not isinstance(x, tuple):
        return (x,)
    return x


def vjp(fn, inputs, grad_outputs, params=()):
    """Pull ``grad_outputs`` back through ``fn`` evaluated at ``inputs``.

    The function is recomputed on detached copies of the inputs so the local graph only lives
    for the duration of this call, only the gradients are returned.

    Parameters
    ----------
        fn : :obj:`callable`
            Function mapping the input tensors to one or more output tensors.
        inputs : :obj:`tuple` of :obj:`torch.Tensor`
            Point at which ``fn`` is linearized.
        grad_outputs : :obj:`tuple`
            One cotangent per output. An entry can be ``None`` to ignore that output, or a
            python scalar for scalar outputs such as a log-determinant.
        params : :obj:`iterable` of :obj:`torch.nn.Parameter`
            Parameters used inside ``fn`` for which gradients are returned as well.

    Returns
    -------
        :obj:`tuple`
            Gradients with respect to the inputs and a list of gradients with respect to the
            parameters. Unused inputs or parameters get zero gradients.

    """
    params = tuple(params)
    with torch.enable_grad():
        detached = tuple(x.detach().requires_grad_() for x in inputs)
        outputs = _as_tuple(fn(*detached))
        differentiated, cotangents = [], []
        for out, g in zip(outputs, grad_outputs):
            if g is None or not out.requires_grad:
                continue
            differentiated.append(out)
            cotangents.append(g if torch.is_tensor(g) else torch.full_like(out, g))
        if len(differentiated) == 0:
            grads = (None,) * (len(detached) + len(params))
        else:
            grads = torch.autograd.grad(differentiated, detached + params, cotangents, allow_unused=True)
    grads = tuple(torch.zeros_like(ref) if g is None else g for g, ref in zip(grads, detached + params))
    return grads[:len(detached)], list(grads[len(detached):])


def module_jvp(module, inputs, tangents, dtheta=None):
    """Forward mode derivative of ``module(*inputs)`` along input and parameter perturbations

    ``dtheta`` is aligned with ``module.parameters()``. Missing tangents are treated as zero.
    """
    names = [name for name, _ in module.named_parameters()]
    params = tuple(p.detach() for _, p in module.named_parameters())
    if dtheta is None:
        dtheta = [None] * len(params)
    if len(dtheta) != len(params):
        raise ValueError("Expected {} parameter perturbations, got {}".format(len(params), len(dtheta)))
    dtheta = tuple(torch.zeros_like(p) if d is None else d.to(p) for p, d in zip(params, dtheta))
    inputs = tuple(x.detach() for x in inputs)
    tangents = tuple(torch.zeros_like(x) if t is None else t.to(x) for x, t in zip(inputs, tangents))
    num_inputs = len(inputs)

    def fn(*primals):
        return functional_call(module, dict(zip(names, primals[num_inputs:])), primals[:num_inputs])

    outputs, doutputs = jvp(fn, inputs + params, tangents + dtheta)
    return _as_tuple(outputs), _as_tuple(doutputs)


class Layer(nn.Module):
    """Parameter bookkeeping shared by the invertible layers and their conditioner blocks"""

    def get_params(self):
        return list(self.parameters())

    def set_params(self, values):
        params = self.get_params()
        if len(params) != len(values):
            raise ValueError("Expected {} parameter values, got {}".format(len(params), len(values)))
        with torch.no_grad():
            for p, v in zip(params, values):
                p.copy_(v)

    def clear_grad(self):
        for p in self.parameters():
            p.grad = None

    def accumulate_grad(self, grads):
        for p, g in zip(self.get_params(), grads):
            if g is None:
                continue
            if p.grad is None:
                p.grad = g.detach().clone()
            else:
                p.grad.add_(g.detach())

    def _split_dtheta(self, dtheta, layers):
        """Slice a flat list of parameter perturbations per layer"""
        if dtheta is None:
            return [None] * len(layers)
        chunks, start = [], 0
        for layer in layers:
            n = len(layer.get_params())
            chunks.append(dtheta[start:start + n])
            start += n
        if start != len(dtheta):
            raise ValueError("Expected {} parameter perturbations, got {}".format(start, len(dtheta)))
        return chunks


class InvertibleLayer(Layer):
    """Base class of all invertible layers and networks.

    Subclasses implement ``forward`` and ``inverse``. The generic ``backward`` reconstructs the
    input from the output and differentiates a local recomputation of ``forward``, so no
    activations have to be kept around between the forward and backward passes. Layers with
    hand-derived derivatives override ``_backward`` and ``jacobian``.

    Attributes
    ----------
        logdet : :obj:`bool`
            If set, ``forward`` returns ``(Y, logdet)`` and ``backward`` includes the gradient
            of ``-logdet``.

    """
    logdet = False

    def logdet_grad(self):
        """Cotangent of the log-determinant during training (the loss contains ``-logdet``)"""
        return -1.0 if self.logdet else None

    def backward(self, dy, y):
        """Backpropagate ``dy`` and reconstruct the input

        Parameters
        ----------
            dy : :obj:`torch.Tensor`
                Gradient of the loss with respect to the output.
            y : :obj:`torch.Tensor`
                Output of the forward pass.

        Returns
        -------
            :obj:`tuple`
                Gradient with respect to the input and the reconstructed input. Parameter
                gradients are accumulated in ``param.grad``.

        """
        dx, dtheta, x = self._backward(dy, y, logdet_grad=self.logdet_grad())
        self.accumulate_grad(dtheta)
        return dx, x

    def adjoint_jacobian(self, dy, y):
        """Transposed Jacobian applied to ``dy``: returns ``(dx, dtheta, x)``, leaves ``param.grad`` as is"""
        return self._backward(dy, y, logdet_grad=None)

    def _backward(self, dy, y, logdet_grad=None):
        with torch.no_grad():
            x = self.inverse(y)
        grad_outputs = (dy, logdet_grad) if self.logdet else (dy,)
        (dx,), dtheta = vjp(self.forward, (x,), grad_outputs, self.get_params())
        return dx, dtheta, x

    def jacobian(self, dx, dtheta, x):
        """Directional derivative of the forward pass

        Returns ``(dy, y)``, or ``(dy, y, logdet, dlogdet)`` when ``logdet`` is set.
        """
        outputs, doutputs = module_jvp(self, (x,), (dx,), dtheta)
        if self.logdet:
            return doutputs[0], outputs[0], outputs[1], doutputs[1]
        return doutputs[0], outputs[0]
