import logging
import torch
import torch.nn as nn

from invnet.layers.base import InvertibleLayer
from invnet.layers.utils import channel_view, spatial_numel, sum_except_channel


logger = logging.getLogger('actnorm')


class ActNorm(InvertibleLayer):
    def __init__(self, k, logdet=False, eps=1e-6):
        """
        Activation normalization (Kingma and Dhariwal, 2018), a per-channel affine map

        :math:`Y = s X + b`

        The scale and bias are initialized from the first batch that passes through the layer, such
        that the output has zero mean and unit variance per channel. If the first call is an inverse
        the initialization is done from the output side instead.

        Parameters
        ----------
            k : :obj:`int`
                Number of channels.

            logdet : :obj:`bool`
                Return the log-determinant :math:`N_{spatial} \\sum \\log |s|` on forward.

            eps : :obj:`float`
                Added to the standard deviation during the data dependent initialization.

        """
        super(ActNorm, self).__init__()
        self.k = k
        self.logdet = logdet
        self.eps = eps
        self.s = nn.Parameter(torch.ones(k))
        self.b = nn.Parameter(torch.zeros(k))
        self.register_buffer('initialized', torch.tensor(False))

    def _check(self, x):
        if x.dim() < 2 or x.shape[1] != self.k:
            raise ValueError("Expected input with {} channels, got shape {}".format(self.k, tuple(x.shape)))

    def _statistics(self, x):
        xt = x.detach().transpose(0, 1).reshape(self.k, -1)
        mean = xt.mean(dim=1)
        std = torch.sqrt(torch.mean((xt - mean[:, None]) ** 2, dim=1))
        return mean, std + self.eps

    def initialize(self, x):
        mean, std = self._statistics(x)
        with torch.no_grad():
            self.s.copy_(1.0 / std)
            self.b.copy_(-mean / std)
            self.initialized.fill_(True)
        logger.debug('Initialized ActNorm({}) from data'.format(self.k))

    def initialize_inverse(self, y):
        mean, std = self._statistics(y)
        with torch.no_grad():
            self.s.copy_(std)
            self.b.copy_(mean)
            self.initialized.fill_(True)
        logger.debug('Initialized ActNorm({}) from output data'.format(self.k))

    def _logdet(self, s, x):
        return spatial_numel(x) * torch.sum(torch.log(torch.abs(s)))

    def forward(self, x):
        self._check(x)
        if not bool(self.initialized):
            self.initialize(x)
        y = x * channel_view(self.s, x.dim()) + channel_view(self.b, x.dim())
        if self.logdet:
            return y, self._logdet(self.s, x)
        return y

    def inverse(self, y):
        self._check(y)
        if not bool(self.initialized):
            self.initialize_inverse(y)
        return (y - channel_view(self.b, y.dim())) / channel_view(self.s, y.dim())

    def _backward(self, dy, y, logdet_grad=None):
        with torch.no_grad():
            x = self.inverse(y)
            dx = dy * channel_view(self.s, dy.dim())
            ds = sum_except_channel(dy * x)
            db = sum_except_channel(dy)
            if logdet_grad is not None:
                ds = ds + logdet_grad * spatial_numel(x) / self.s
        return dx, [ds, db], x

    def jacobian(self, dx, dtheta, x):
        self._check(x)
        if not bool(self.initialized):
            self.initialize(x)
        ds, db = (None, None) if dtheta is None else dtheta
        ds = torch.zeros_like(self.s) if ds is None else ds
        db = torch.zeros_like(self.b) if db is None else db
        with torch.no_grad():
            s = channel_view(self.s, x.dim())
            y = x * s + channel_view(self.b, x.dim())
            dy = dx * s + x * channel_view(ds, x.dim()) + channel_view(db, x.dim())
            if self.logdet:
                dlogdet = spatial_numel(x) * torch.sum(ds / self.s)
                return dy, y, self._logdet(self.s, x), dlogdet
        return dy, y

    def extra_repr(self):
        return 'k={}, logdet={}'.format(self.k, self.logdet)
