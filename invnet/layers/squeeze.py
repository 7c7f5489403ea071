"""Invertible reshapes that trade spatial resolution for channels.

All functions take ``(B, C, *spatial)`` tensors with two or three spatial dimensions whose
sizes are divisible by two.
"""
import math
import torch
import torch.nn as nn


def _check_divisible(x):
    if x.dim() not in (4, 5):
        raise ValueError("Expected a 4D or 5D tensor, got {} dimensions".format(x.dim()))
    if any(s % 2 != 0 for s in x.shape[2:]):
        raise ValueError("Spatial dimensions must be divisible by 2, got {}".format(tuple(x.shape[2:])))


def _checkerboard_order(nd):
    """Sub-pixel positions (row-major) sorted by the parity of their coordinate sum"""
    return sorted(range(2 ** nd), key=lambda k: (bin(k).count('1') % 2, k))


def squeeze(x, pattern='column'):
    """Space to depth by a factor of 2 in every spatial dimension

    Patterns
    --------
        column : channels are ordered as (C, sub-pixel), identical to pixel_unshuffle in 2D.
        checkerboard : channels are ordered as (sub-pixel, C), every group of C channels holds
                       one sub-sampled position. Positions with an even coordinate sum come first,
                       so splitting the channels in half separates the two colors of a checkerboard.
    """
    _check_divisible(x)
    b, c = x.shape[:2]
    spatial = x.shape[2:]
    nd = len(spatial)
    shape = [b, c]
    for s in spatial:
        shape += [s // 2, 2]
    x = x.reshape(shape)
    # (B, C, s1, 2, s2, 2[, s3, 2]) positions of the factor-2 axes
    sub_axes = [3 + 2 * i for i in range(nd)]
    coarse_axes = [2 + 2 * i for i in range(nd)]
    if pattern == 'column':
        perm = [0, 1] + sub_axes + coarse_axes
    elif pattern == 'checkerboard':
        perm = [0] + sub_axes + [1] + coarse_axes
    else:
        raise NotImplementedError('Unknown squeeze pattern: %s' % pattern)
    coarse = [s // 2 for s in spatial]
    y = x.permute(perm)
    if pattern == 'checkerboard':
        y = y.reshape([b, 2 ** nd, c] + coarse)[:, _checkerboard_order(nd)]
    return y.reshape([b, c * 2 ** nd] + coarse)


def unsqueeze(y, pattern='column'):
    if y.dim() not in (4, 5):
        raise ValueError("Expected a 4D or 5D tensor, got {} dimensions".format(y.dim()))
    b, cs = y.shape[:2]
    spatial = y.shape[2:]
    nd = len(spatial)
    factor = 2 ** nd
    if cs % factor != 0:
        raise ValueError("Number of channels ({}) must be divisible by {}".format(cs, factor))
    c = cs // factor
    if pattern == 'column':
        y = y.reshape([b, c] + [2] * nd + list(spatial))
        # (B, C, 2.., s..) -> (B, C, s1, 2, s2, 2, ...)
        perm = [0, 1]
        for i in range(nd):
            perm += [2 + nd + i, 2 + i]
    elif pattern == 'checkerboard':
        order = _checkerboard_order(nd)
        inverse_order = [order.index(k) for k in range(factor)]
        y = y.reshape([b, factor, c] + list(spatial))[:, inverse_order]
        y = y.reshape([b] + [2] * nd + [c] + list(spatial))
        # (B, 2.., C, s..) -> (B, C, s1, 2, s2, 2, ...)
        perm = [0, 1 + nd]
        for i in range(nd):
            perm += [2 + nd + i, 1 + i]
    else:
        raise NotImplementedError('Unknown squeeze pattern: %s' % pattern)
    return y.permute(perm).reshape([b, c] + [2 * s for s in spatial])


def wavelet_squeeze(x):
    """Orthonormal Haar transform, one level along every spatial dimension

    Output channels are grouped per sub-band, the low-pass band comes first.
    """
    _check_divisible(x)
    for axis in range(2, x.dim()):
        index = [slice(None)] * x.dim()
        index[axis] = slice(0, None, 2)
        even = x[tuple(index)]
        index[axis] = slice(1, None, 2)
        odd = x[tuple(index)]
        x = torch.cat([even + odd, even - odd], dim=1) / math.sqrt(2.0)
    return x


def wavelet_unsqueeze(y):
    if y.dim() not in (4, 5):
        raise ValueError("Expected a 4D or 5D tensor, got {} dimensions".format(y.dim()))
    factor = 2 ** (y.dim() - 2)
    if y.shape[1] % factor != 0:
        raise ValueError("Number of channels ({}) must be divisible by {}".format(y.shape[1], factor))
    for axis in reversed(range(2, y.dim())):
        low, high = torch.chunk(y, 2, dim=1)
        even = (low + high) / math.sqrt(2.0)
        odd = (low - high) / math.sqrt(2.0)
        y = torch.stack([even, odd], dim=axis + 1).flatten(axis, axis + 1)
    return y


class ShuffleLayer(nn.Module):
    """Squeezer that reorders pixels into channels"""
    def __init__(self, pattern='column'):
        super(ShuffleLayer, self).__init__()
        if pattern not in ('column', 'checkerboard'):
            raise NotImplementedError('Unknown squeeze pattern: %s' % pattern)
        self.pattern = pattern

    def forward(self, x):
        return squeeze(x, pattern=self.pattern)

    def inverse(self, y):
        return unsqueeze(y, pattern=self.pattern)


class WaveletLayer(nn.Module):
    """Squeezer based on the Haar wavelet transform"""
    def forward(self, x):
        return wavelet_squeeze(x)

    def inverse(self, y):
        return wavelet_unsqueeze(y)


def create_squeezer(squeezer='shuffle'):
    if isinstance(squeezer, nn.Module):
        return squeezer
    if squeezer == 'shuffle':
        return ShuffleLayer()
    elif squeezer == 'checkerboard':
        return ShuffleLayer(pattern='checkerboard')
    elif squeezer == 'wavelet':
        return WaveletLayer()
    raise NotImplementedError('Unknown squeezer: %s' % squeezer)
