import pytest
import torch

from invnet.layers.utils import tensor_split, tensor_cat, cat_states, split_states, glow_logdet_forward, \
    glow_logdet_backward


@pytest.mark.parametrize('channels,expected', [(2, 1), (3, 2), (4, 2), (5, 2), (7, 4)])
def test_tensor_split_rounds_half_to_even(channels, expected):
    x = torch.randn(2, channels, 4, 4)
    x1, x2 = tensor_split(x)
    assert x1.shape[1] == expected
    assert x2.shape[1] == channels - expected
    assert torch.equal(tensor_cat(x1, x2), x)


def test_tensor_split_index():
    x = torch.randn(2, 6, 3)
    x1, x2 = tensor_split(x, 1)
    assert x1.shape == (2, 1, 3)
    assert x2.shape == (2, 5, 3)


def test_cat_split_states():
    z1 = torch.randn(3, 6, 8, 8)
    z2 = torch.randn(3, 12, 4, 4)
    x = torch.randn(3, 12, 4, 4)
    z = cat_states([z1, z2], x)
    assert z.shape == (3, 6 * 64 + 12 * 16 * 2)
    (z1_, z2_), x_ = split_states(z, [z1.shape[1:], z2.shape[1:], x.shape[1:]])
    assert torch.equal(z1, z1_)
    assert torch.equal(z2, z2_)
    assert torch.equal(x, x_)


def test_split_states_size_mismatch():
    with pytest.raises(ValueError):
        split_states(torch.randn(2, 10), [(3,), (3,)])


def test_glow_logdet():
    s = torch.rand(4, 2, 3, 3, dtype=torch.float64) + 0.5
    assert torch.allclose(glow_logdet_forward(s), torch.log(s).sum() / 4)
    with torch.enable_grad():
        s_ = s.clone().requires_grad_()
        glow_logdet_forward(s_).backward()
    assert torch.allclose(s_.grad, glow_logdet_backward(s))
