import torch


def tensor_split(x, split_index=None):
    """Split a tensor along the channel dimension.

    By default the first part receives ``round(C / 2)`` channels, so for an odd
    number of channels the split follows Python's round half to even.
    """
    if split_index is None:
        split_index = int(round(x.shape[1] / 2))
    return x[:, :split_index].contiguous(), x[:, split_index:].contiguous()


def tensor_cat(x1, x2):
    return torch.cat([x1, x2], dim=1)


def cat_states(z_list, x):
    """Flatten the factored out latents and the remaining state into one (B, N) tensor"""
    batch_size = x.shape[0]
    return torch.cat([z.reshape(batch_size, -1) for z in z_list] + [x.reshape(batch_size, -1)], dim=1)


def split_states(z, dims):
    """Inverse of :func:`cat_states`

    Parameters
    ----------
        z : :obj:`torch.Tensor`
            Tensor with a leading batch dimension, any trailing shape.
        dims : :obj:`list` of :obj:`tuple`
            Shapes (without the batch dimension) of the factored out latents followed
            by the shape of the remaining state.

    Returns
    -------
        :obj:`tuple`
            List of the latent tensors and the remaining state.

    """
    batch_size = z.shape[0]
    flat = z.reshape(batch_size, -1)
    sizes = [int(torch.Size(d).numel()) for d in dims]
    if sum(sizes) != flat.shape[1]:
        raise ValueError("Cannot split a state of size {} into parts of sizes {}".format(flat.shape[1], sizes))
    parts = torch.split(flat, sizes, dim=1)
    states = [p.reshape((batch_size,) + tuple(d)) for p, d in zip(parts, dims)]
    return states[:-1], states[-1]


def glow_logdet_forward(s):
    return torch.sum(torch.log(torch.abs(s))) / s.shape[0]


def glow_logdet_backward(s):
    return 1.0 / s / s.shape[0]


def spatial_numel(x):
    n = 1
    for e in x.shape[2:]:
        n *= int(e)
    return n


def channel_view(v, ndim):
    """Reshape a per-channel vector so it broadcasts against a (B, C, ...) tensor"""
    return v.reshape((1, -1) + (1,) * (ndim - 2))


def sum_except_channel(x):
    dims = [0] + list(range(2, x.dim()))
    return torch.sum(x, dim=dims)
