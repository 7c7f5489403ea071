import functools
import pytest
import torch

from invnet.layers.conditional_glow import ConditionalLayerGlow
from invnet.layers.cond_spade import CondCouplingLayerSpade
from invnet.utils.derivatives import dot
from invnet.layers.tests.helpers import set_seeds, autograd_reference, randn_like_params, assert_adjoint


LAYERS = [ConditionalLayerGlow, functools.partial(ConditionalLayerGlow, spade=True), CondCouplingLayerSpade]


@pytest.mark.parametrize('klass', LAYERS)
@pytest.mark.parametrize('ndims,shape', [(1, (2, 4, 16)), (2, (2, 4, 8, 8)), (3, (2, 4, 4, 4, 4))])
def test_conditional_inverse(klass, ndims, shape):
    set_seeds(42)
    CL = klass(shape[1], 3, 8, logdet=True, ndims=ndims).double()
    x = torch.randn(shape, dtype=torch.float64)
    c = torch.randn((shape[0], 3) + shape[2:], dtype=torch.float64)
    y, logdet = CL.forward(x, c)
    assert y.shape == x.shape
    assert torch.allclose(CL.inverse(y, c), x, atol=1e-8)


@pytest.mark.parametrize('klass', LAYERS)
@pytest.mark.parametrize('logdet', [False, True])
def test_conditional_backward(klass, logdet):
    set_seeds(42)
    CL = klass(4, 2, 8, logdet=logdet).double()
    x = torch.randn(2, 4, 6, 6, dtype=torch.float64)
    c = torch.randn(2, 2, 6, 6, dtype=torch.float64)
    dy = torch.randn_like(x)
    y, (dx_ref, dc_ref), grads_ref = autograd_reference(CL, [x, c], dy)
    dx, x_, dc = CL.backward(dy, y, c)
    assert torch.allclose(x_, x)
    assert torch.allclose(dx, dx_ref)
    assert torch.allclose(dc, dc_ref)
    for p, g in zip(CL.get_params(), grads_ref):
        assert torch.allclose(p.grad, g)


@pytest.mark.parametrize('klass', LAYERS)
def test_conditional_adjoint(klass):
    set_seeds(42)
    CL = klass(4, 2, 8, logdet=True).double()
    x = torch.randn(2, 4, 6, 6, dtype=torch.float64)
    c = torch.randn(2, 2, 6, 6, dtype=torch.float64)
    dx = torch.randn_like(x)
    dc = torch.randn_like(c)
    dtheta = randn_like_params(CL)
    dy, y, logdet, dlogdet = CL.jacobian(dx, dtheta, x, c, dc)
    dy_ = torch.randn_like(dy)
    dx_, dtheta_, x_, dc_ = CL.adjoint_jacobian(dy_, y, c)
    assert torch.allclose(x_, x)
    assert_adjoint(dot(dy, dy_), dot([dx, dc] + dtheta, [dx_, dc_] + dtheta_))


def test_spade_scale_depends_on_condition_only():
    set_seeds(42)
    CL = CondCouplingLayerSpade(2, 1, 4).double()
    c = torch.randn(1, 1, 4, 4, dtype=torch.float64)
    x1 = torch.randn(1, 2, 4, 4, dtype=torch.float64)
    x2 = torch.randn(1, 2, 4, 4, dtype=torch.float64)
    # the layer is affine in x for a fixed condition
    y0 = CL.forward(torch.zeros_like(x1), c)
    assert torch.allclose(CL.forward(x1 + x2, c) - y0, (CL.forward(x1, c) - y0) + (CL.forward(x2, c) - y0))


def test_conditional_glow_spade_ignores_second_half():
    set_seeds(42)
    CL = ConditionalLayerGlow(4, 2, 8, spade=True).double()
    assert CL.RB.n_in == 2
    c = torch.randn(1, 2, 4, 4, dtype=torch.float64)
    y = CL.forward(torch.randn(1, 4, 4, 4, dtype=torch.float64), c)
    y1, x2 = y[:, :2], y[:, 2:]
    # changing the untouched half leaves the scale and shift of the first half unchanged
    y_ = torch.cat([y1, x2 + 1.0], dim=1)
    x = CL.inverse(y, c)
    x_ = CL.inverse(y_, c)
    assert torch.allclose(CL.C(x)[:, :2], CL.C(x_)[:, :2])
