import pytest
import torch
import torch.nn as nn

from invnet.layers.conditional_glow import ConditionalLayerGlow
from invnet.networks.conditional_glow_frank import NetworkConditionalGlowFrank
from invnet.utils.derivatives import dot
from invnet.layers.tests.helpers import set_seeds, autograd_reference, randn_like_params, finite_difference, \
    relative_error, assert_adjoint


def _autograd_reference(G, x, c, dz, c_in=None):
    G.clear_grad()
    x = x.detach().clone().requires_grad_()
    z, _, logdet = G.forward(x, c)
    loss = torch.sum(z * dz) - logdet
    loss.backward()
    grads = [p.grad.clone() for p in G.get_params()]
    G.clear_grad()
    return z.detach(), x.grad, grads


@pytest.mark.parametrize('split_scales', [False, True])
def test_frank_glow_unconditional(split_scales):
    set_seeds(42)
    G = NetworkConditionalGlowFrank(2, 3, 8, 2, 2, split_scales=split_scales).double()
    assert not any([isinstance(layer, ConditionalLayerGlow) for layer in G.flows])
    assert len(G.flows) == 2 * 2 * 2
    x = torch.randn(2, 2, 8, 8, dtype=torch.float64)
    z, logdet = G.forward(x)
    assert z.shape == x.shape
    assert torch.allclose(G.inverse(z), x, atol=1e-8)

    dz = torch.randn_like(z)
    _, (dx_ref,), grads_ref = autograd_reference(G, [x], dz)
    dx, x_ = G.backward(dz, z)
    assert torch.allclose(x_, x, atol=1e-8)
    assert torch.allclose(dx, dx_ref)
    for p, g in zip(G.get_params(), grads_ref):
        assert torch.allclose(p.grad, g)


@pytest.mark.parametrize('split_scales', [False, True])
@pytest.mark.parametrize('spade', [False, True])
def test_frank_glow_conditional_backward(split_scales, spade):
    set_seeds(42)
    G = NetworkConditionalGlowFrank(2, 3, 8, 2, 2, cond=True, spade=spade, split_scales=split_scales).double()
    assert len(G.flows) == 4 * 2 * 2
    assert all([layer.spade == spade for layer in G.flows if isinstance(layer, ConditionalLayerGlow)])
    x = torch.randn(2, 2, 8, 8, dtype=torch.float64)
    c = torch.randn(2, 3, 8, 8, dtype=torch.float64)
    with torch.no_grad():
        z, c_out, _ = G.forward(x, c)
    assert torch.allclose(G.inverse(z, c_out), x, atol=1e-8)

    dz = torch.randn_like(z)
    _, dx_ref, grads_ref = _autograd_reference(G, x, c, dz)
    dx, x_ = G.backward(dz, z, c_out)
    assert torch.allclose(x_, x, atol=1e-8)
    assert torch.allclose(dx, dx_ref)
    for p, g in zip(G.get_params(), grads_ref):
        assert torch.allclose(p.grad, g)


@pytest.mark.parametrize('cond', [False, True])
def test_frank_glow_jacobian(cond):
    set_seeds(42)
    G = NetworkConditionalGlowFrank(2, 1, 8, 2, 1, cond=cond, split_scales=True).double()
    x = torch.randn(2, 2, 8, 8, dtype=torch.float64)
    c = torch.randn(2, 1, 8, 8, dtype=torch.float64) if cond else None
    inputs = [x, c] if cond else [x]
    with torch.no_grad():
        G.forward(*inputs)
    dx = torch.randn_like(x)
    dc = torch.randn_like(c) if cond else None
    dtheta = randn_like_params(G)
    dz, z, logdet, dlogdet = G.jacobian(dx, dtheta, x, c, dc)
    out = G.forward(*inputs)
    assert torch.allclose(z, out[0])
    assert torch.allclose(logdet, out[-1])
    fd = finite_difference(G, inputs, [dx, dc] if cond else [dx], dtheta)
    assert relative_error(dz, fd[0]) < 1e-5
    assert abs(float(dlogdet) - float(fd[-1])) < 1e-5 * max(1.0, abs(float(fd[-1])))

    dz_ = torch.randn_like(dz)
    if cond:
        dx_, dtheta_, x_, dc_ = G.adjoint_jacobian(dz_, z, out[1])
        assert_adjoint(dot(dz, dz_), dot([dx, dc] + dtheta, [dx_, dc_] + dtheta_))
    else:
        dx_, dtheta_, x_ = G.adjoint_jacobian(dz_, z)
        assert_adjoint(dot(dz, dz_), dot([dx] + dtheta, [dx_] + dtheta_))
    assert torch.allclose(x_, x, atol=1e-8)


def test_frank_glow_summary_network():
    set_seeds(42)
    summary = nn.Sequential(nn.Conv2d(1, 3, 3, padding=1), nn.Tanh()).double()
    G = NetworkConditionalGlowFrank(2, 3, 8, 2, 1, cond=True, summary_net=summary, split_scales=True).double()
    x = torch.randn(2, 2, 8, 8, dtype=torch.float64)
    c = torch.randn(2, 1, 8, 8, dtype=torch.float64)
    with torch.no_grad():
        z, c_out, _ = G.forward(x, c)
    assert c_out.shape == (2, 48, 2, 2)

    dz = torch.randn_like(z)
    _, dx_ref, grads_ref = _autograd_reference(G, x, c, dz)
    with pytest.raises(ValueError):
        G.backward(dz, z, c_out)
    dx, _ = G.backward(dz, z, c_out, c_in=c)
    assert torch.allclose(dx, dx_ref)
    for p, g in zip(G.get_params(), grads_ref):
        assert torch.allclose(p.grad, g)
    assert all([p.grad is not None for p in summary.parameters()])


def test_frank_glow_invalid_arguments():
    with pytest.raises(ValueError):
        NetworkConditionalGlowFrank(2, 1, 8, 1, 1, summary_net=nn.Identity())
    G = NetworkConditionalGlowFrank(2, 1, 8, 1, 1, cond=True)
    with pytest.raises(ValueError):
        G.forward(torch.randn(1, 2, 4, 4))
