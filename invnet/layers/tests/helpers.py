import random
import numpy as np
import torch


def set_seeds(seed):
    torch.backends.cudnn.deterministic = True
    torch.backends.cudnn.benchmark = False
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)
    torch.cuda.manual_seed(seed)


def randn_like_params(layer):
    return [torch.randn_like(p) for p in layer.get_params()]


def autograd_reference(layer, inputs, dy):
    """Gradients of ``<y, dy> - logdet`` computed by regular autograd

    Returns the output, the input gradients and the parameter gradients, the layer gradients are
    cleared afterwards.
    """
    layer.clear_grad()
    inputs = [x.detach().clone().requires_grad_() for x in inputs]
    out = layer(*inputs)
    if layer.logdet:
        y, logdet = out
        loss = torch.sum(y * dy) - logdet
    else:
        y = out
        loss = torch.sum(y * dy)
    loss.backward()
    param_grads = [torch.zeros_like(p) if p.grad is None else p.grad.clone() for p in layer.get_params()]
    input_grads = [torch.zeros_like(x) if x.grad is None else x.grad for x in inputs]
    layer.clear_grad()
    return y.detach(), input_grads, param_grads


def finite_difference(layer, inputs, dinputs, dtheta, h=1e-6):
    """Central difference of the forward pass of a layer along input and parameter perturbations"""
    params = [p.detach().clone() for p in layer.get_params()]

    def evaluate(sign):
        layer.set_params([p + sign * h * d for p, d in zip(params, dtheta)])
        with torch.no_grad():
            out = layer(*[x + sign * h * d for x, d in zip(inputs, dinputs)])
        return out if isinstance(out, tuple) else (out,)

    plus, minus = evaluate(1.0), evaluate(-1.0)
    layer.set_params(params)
    return [(p - m) / (2 * h) for p, m in zip(plus, minus)]


def relative_error(a, b):
    return (torch.norm(a - b) / torch.norm(b)).item()


def assert_adjoint(a, b, rtol=1e-8):
    assert abs(a - b) <= rtol * max(abs(a), abs(b), 1.0)
