import numpy as np
import pytest
import torch

from invnet.networks.glow import NetworkGlow, scale_channels, latent_dims
from invnet.utils.derivatives import dot, taylor_test, convergence_rates
from invnet.utils.loss import log_likelihood, log_likelihood_grad
from invnet.layers.tests.helpers import set_seeds, autograd_reference, randn_like_params, finite_difference, \
    relative_error, assert_adjoint


def _network(n_in=2, split_scales=True, ndims=2, L=2, K=2, **kwargs):
    G = NetworkGlow(n_in, 8, L, K, split_scales=split_scales, ndims=ndims, **kwargs).double()
    return G


def _initialize(G, x):
    with torch.no_grad():
        G.forward(x)


def test_scale_channels():
    assert scale_channels(2, 3, False, 2) == [2, 2, 2]
    assert scale_channels(2, 3, True, 2) == [8, 16, 32]
    assert scale_channels(3, 2, True, 3) == [24, 96]


def test_latent_dims():
    assert latent_dims((2, 4, 8, 8), 2, False) == [(4, 8, 8)]
    assert latent_dims((2, 4, 8, 8), 2, True) == [(8, 4, 4), (32, 2, 2)]
    with pytest.raises(ValueError):
        latent_dims((2, 4, 6, 6), 2, True)


@pytest.mark.parametrize('split_scales', [False, True])
@pytest.mark.parametrize('squeezer', ['shuffle', 'checkerboard', 'wavelet'])
@pytest.mark.parametrize('ndims,shape', [(2, (2, 2, 8, 8)), (3, (2, 2, 4, 4, 4))])
def test_glow_inverse(split_scales, squeezer, ndims, shape):
    set_seeds(42)
    G = _network(split_scales=split_scales, ndims=ndims, squeezer=squeezer)
    x = torch.randn(shape, dtype=torch.float64)
    z, logdet = G.forward(x)
    assert z.shape == x.shape
    assert logdet.dim() == 0
    assert torch.allclose(G.inverse(z), x, atol=1e-8)


@pytest.mark.parametrize('split_scales', [False, True])
def test_glow_logdet(split_scales):
    set_seeds(42)
    G = _network(split_scales=split_scales)
    x = torch.randn(1, 2, 4, 4, dtype=torch.float64)
    _initialize(G, torch.randn(4, 2, 4, 4, dtype=torch.float64))
    _, logdet = G.forward(x)
    jac = torch.autograd.functional.jacobian(lambda v: G.forward(v.reshape(x.shape))[0].reshape(-1), x.reshape(-1))
    _, ref = torch.linalg.slogdet(jac)
    assert torch.allclose(logdet, ref)


@pytest.mark.parametrize('split_scales', [False, True])
def test_glow_backward(split_scales):
    set_seeds(42)
    G = _network(split_scales=split_scales)
    x = torch.randn(2, 2, 8, 8, dtype=torch.float64)
    _initialize(G, x)
    dz = torch.randn_like(x)
    z, (dx_ref,), grads_ref = autograd_reference(G, [x], dz)
    dx, x_ = G.backward(dz, z)
    assert torch.allclose(x_, x, atol=1e-8)
    assert torch.allclose(dx, dx_ref)
    for p, g in zip(G.get_params(), grads_ref):
        assert torch.allclose(p.grad, g)

    # gradients accumulate until they are cleared
    G.backward(dz, z)
    for p, g in zip(G.get_params(), grads_ref):
        assert torch.allclose(p.grad, 2 * g)
    G.clear_grad()
    assert all([p.grad is None for p in G.get_params()])


@pytest.mark.parametrize('split_scales', [False, True])
def test_glow_jacobian(split_scales):
    set_seeds(42)
    G = _network(split_scales=split_scales)
    x = torch.randn(2, 2, 8, 8, dtype=torch.float64)
    _initialize(G, x)
    dx = torch.randn_like(x)
    dtheta = randn_like_params(G)
    dz, z, logdet, dlogdet = G.jacobian(dx, dtheta, x)
    z_ref, logdet_ref = G.forward(x)
    assert torch.allclose(z, z_ref)
    assert torch.allclose(logdet, logdet_ref)
    dz_fd, dlogdet_fd = finite_difference(G, [x], [dx], dtheta)
    assert relative_error(dz, dz_fd) < 1e-5
    assert abs(float(dlogdet) - float(dlogdet_fd)) < 1e-5 * max(1.0, abs(float(dlogdet_fd)))

    dz_ = torch.randn_like(dz)
    dx_, dtheta_, x_ = G.adjoint_jacobian(dz_, z)
    assert torch.allclose(x_, x, atol=1e-8)
    assert_adjoint(dot(dz, dz_), dot([dx] + dtheta, [dx_] + dtheta_))


def test_glow_taylor():
    set_seeds(42)
    G = _network(split_scales=True)
    x = torch.randn(2, 2, 8, 8, dtype=torch.float64)
    _initialize(G, x)
    theta0 = [p.detach().clone() for p in G.get_params()]
    dtheta = randn_like_params(G)

    def loss(theta):
        G.set_params(theta)
        G.clear_grad()
        with torch.no_grad():
            z, logdet = G.forward(x)
        G.backward(-log_likelihood_grad(z), z)
        return -log_likelihood(z) - logdet, [p.grad.clone() for p in G.get_params()]

    # small steps keep the perturbation away from the kinks of the ReLUs in the residual blocks
    err1, err2 = taylor_test(loss, theta0, dtheta, h=1e-5, maxiter=4)
    assert np.allclose(convergence_rates(err1)[-2:], 1.0, atol=0.1)
    assert np.allclose(convergence_rates(err2)[-2:], 2.0, atol=0.1)


def test_glow_sample():
    set_seeds(42)
    G = _network(split_scales=True)
    _initialize(G, torch.randn(2, 2, 8, 8, dtype=torch.float64))
    x = G.sample(3, (2, 8, 8), temperature=0.5)
    assert x.shape == (3, 2, 8, 8)
    assert x.dtype == torch.float64
    assert torch.isfinite(x).all()


def test_glow_single_scale_1d():
    set_seeds(42)
    G = _network(split_scales=False, ndims=1)
    x = torch.randn(2, 2, 16, dtype=torch.float64)
    z, logdet = G.forward(x)
    assert torch.allclose(G.inverse(z), x, atol=1e-8)
    dx, x_ = G.backward(z, z)
    assert dx.shape == x.shape
    assert torch.allclose(x_, x, atol=1e-8)
