import pytest
import torch

from invnet.networks.loop import NetworkLoop
from invnet.utils.derivatives import dot
from invnet.layers.tests.helpers import set_seeds, randn_like_params, finite_difference, relative_error, \
    assert_adjoint


def _problem(batch_size=2, size=(8, 8), n_data=20):
    npix = size[0] * size[1]
    J = torch.randn(n_data, npix, dtype=torch.float64) / npix ** 0.5
    m = torch.randn(batch_size, npix, dtype=torch.float64)
    d = m @ J.t()
    eta = torch.zeros((batch_size, 1) + size, dtype=torch.float64)
    s = torch.randn((batch_size, 3) + size, dtype=torch.float64)
    return eta, s, J, d


def test_loop_misfit_gradient():
    set_seeds(42)
    L = NetworkLoop(4, 8, 2).double()
    eta, s, J, d = _problem()
    g = L.misfit_gradient(eta, J, d)
    assert g.shape == eta.shape
    assert torch.allclose(torch.max(torch.abs(g)), torch.tensor(1.0, dtype=torch.float64))
    ref = -(d @ J).reshape(eta.shape)
    assert torch.allclose(g, ref / torch.max(torch.abs(ref)))


@pytest.mark.parametrize('maxiter', [1, 3])
def test_loop_inverse(maxiter):
    set_seeds(42)
    L = NetworkLoop(4, 8, maxiter).double()
    eta, s, J, d = _problem()
    eta_out, s_out = L.forward(eta, s, J, d)
    assert eta_out.shape == eta.shape
    assert s_out.shape == s.shape
    eta_, s_ = L.inverse(eta_out, s_out, J, d)
    assert torch.allclose(eta_, eta, atol=1e-8)
    assert torch.allclose(s_, s, atol=1e-8)


def test_loop_backward():
    set_seeds(42)
    L = NetworkLoop(4, 8, 3, psi=torch.tanh).double()
    eta, s, J, d = _problem()
    eta = 0.1 * torch.randn_like(eta)
    eta_ref = eta.clone().requires_grad_()
    s_ref = s.clone().requires_grad_()
    eta_out, s_out = L.forward(eta_ref, s_ref, J, d)
    deta = torch.randn_like(eta_out)
    ds = torch.randn_like(s_out)
    torch.autograd.backward([eta_out, s_out], [deta, ds])
    grads_ref = [p.grad.clone() for p in L.get_params()]
    L.clear_grad()

    deta_, ds_, eta_, s_ = L.backward(deta, ds, eta_out.detach(), s_out.detach(), J, d)
    assert torch.allclose(eta_, eta, atol=1e-8)
    assert torch.allclose(s_, s, atol=1e-8)
    assert torch.allclose(deta_, eta_ref.grad)
    assert torch.allclose(ds_, s_ref.grad)
    for p, g in zip(L.get_params(), grads_ref):
        assert torch.allclose(p.grad, g)


def test_loop_needs_two_channels():
    with pytest.raises(ValueError):
        NetworkLoop(1, 8, 2)


def test_loop_exact_fit():
    set_seeds(42)
    L = NetworkLoop(4, 8, 2).double()
    eta, s, J, _ = _problem()
    eta = torch.randn_like(eta)
    d = eta.reshape(eta.shape[0], -1) @ J.t()
    assert torch.equal(L.misfit_gradient(eta, J, d), torch.zeros_like(eta))
    eta_out, s_out = L.forward(eta, s, J, d)
    assert torch.isfinite(eta_out).all() and torch.isfinite(s_out).all()
    deta, ds, eta_, s_ = L.backward(torch.ones_like(eta_out), torch.ones_like(s_out), eta_out, s_out, J, d)
    assert torch.allclose(eta_, eta, atol=1e-8)
    assert torch.isfinite(deta).all() and torch.isfinite(ds).all()


def test_loop_jacobian():
    set_seeds(42)
    L = NetworkLoop(4, 8, 2, psi=torch.tanh).double()
    eta, s, J, d = _problem()
    eta = 0.1 * torch.randn_like(eta)
    deta, ds = torch.randn_like(eta), torch.randn_like(s)
    dtheta = randn_like_params(L)
    deta_out, ds_out, eta_out, s_out = L.jacobian(deta, ds, dtheta, eta, s, J, d)
    eta_ref, s_ref = L.forward(eta, s, J, d)
    assert torch.allclose(eta_out, eta_ref)
    assert torch.allclose(s_out, s_ref)
    deta_fd, ds_fd = finite_difference(L, [eta, s, J, d], [deta, ds, torch.zeros_like(J), torch.zeros_like(d)],
                                       dtheta)
    assert relative_error(deta_out, deta_fd) < 1e-5
    assert relative_error(ds_out, ds_fd) < 1e-5


def test_loop_adjoint():
    set_seeds(42)
    L = NetworkLoop(4, 8, 2, psi=torch.tanh).double()
    eta, s, J, d = _problem()
    eta = 0.1 * torch.randn_like(eta)
    deta, ds = torch.randn_like(eta), torch.randn_like(s)
    dtheta = randn_like_params(L)
    deta_out, ds_out, eta_out, s_out = L.jacobian(deta, ds, dtheta, eta, s, J, d)
    deta_, ds_ = torch.randn_like(deta_out), torch.randn_like(ds_out)
    deta_in, ds_in, dtheta_, eta_in, s_in = L.adjoint_jacobian(deta_, ds_, eta_out, s_out, J, d)
    assert torch.allclose(eta_in, eta, atol=1e-8)
    assert torch.allclose(s_in, s, atol=1e-8)
    assert_adjoint(dot([deta_out, ds_out], [deta_, ds_]), dot([deta, ds] + dtheta, [deta_in, ds_in] + dtheta_))
    assert all([p.grad is None for p in L.get_params()])
