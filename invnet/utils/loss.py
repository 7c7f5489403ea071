import math
import torch


def mse(y, y0):
    """Half the squared l2 misfit averaged over the batch"""
    return 0.5 * torch.sum((y - y0) ** 2) / y.shape[0]


def mse_grad(y, y0):
    return (y - y0) / y.shape[0]


def log_likelihood(x, mu=0.0, sigma=1.0):
    """Gaussian log-likelihood of every batch element, averaged over the batch

    Parameters
    ----------
        x : :obj:`torch.Tensor`
            Tensor of shape (B, ...).
        mu, sigma : :obj:`float`
            Mean and standard deviation of the normal distribution.

    Returns
    -------
        :obj:`torch.Tensor`
            Scalar :math:`\\frac{1}{B} \\sum_b \\log p(x_b)`, including the normalization constant.

    """
    n = x[0].numel()
    sq = torch.sum((x - mu) ** 2) / (2.0 * sigma ** 2) / x.shape[0]
    return -sq - n * (0.5 * math.log(2 * math.pi) + math.log(sigma))


def log_likelihood_grad(x, mu=0.0, sigma=1.0):
    return -(x - mu) / sigma ** 2 / x.shape[0]


def bits_per_dim(nll, shape, n_bins=None):
    """Convert a negative log-likelihood in nats per sample to bits per dimension

    Parameters
    ----------
        nll : :obj:`float` or :obj:`torch.Tensor`
            Negative log-likelihood of one sample, e.g. ``-log_likelihood(z) - logdet``.
        shape : :obj:`tuple`
            Shape of one sample, (C, *spatial).
        n_bins : :obj:`int`, optional
            Number of quantization levels of the data if it was scaled to [0, 1), e.g. 256. The
            discretization term ``D log(n_bins)`` is then added.

    """
    dims = 1
    for s in shape:
        dims *= int(s)
    if n_bins is not None:
        nll = nll + dims * math.log(n_bins)
    return nll / (dims * math.log(2.0))
