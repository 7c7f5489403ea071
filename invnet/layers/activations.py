import torch
import torch.nn as nn


class SigmoidLayer(nn.Module):
    """ Scaled sigmoid activation

        Outputs low + (high - low) * sigmoid(x), used for the scale of the coupling layers
    """
    def __init__(self, low=0.0, high=1.0):
        super(SigmoidLayer, self).__init__()
        if not high > low:
            raise ValueError("Expected high > low, got low={} and high={}".format(low, high))
        self.low = float(low)
        self.high = float(high)

    def forward(self, x):
        return self.low + (self.high - self.low) * torch.sigmoid(x)

    def inverse(self, y):
        p = (y - self.low) / (self.high - self.low)
        return torch.log(p) - torch.log1p(-p)

    def backward(self, dy, y):
        """Input gradient expressed with the output, so the input does not need to be stored"""
        return dy * (y - self.low) * (self.high - y) / (self.high - self.low)

    def extra_repr(self):
        return 'low={}, high={}'.format(self.low, self.high)


class Sigmoid2Layer(SigmoidLayer):
    """ Sigmoid with range (0, 2), so the identity map is reachable at x = 0 """
    def __init__(self):
        super(Sigmoid2Layer, self).__init__(low=0.0, high=2.0)


class ExpLayer(nn.Module):
    def forward(self, x):
        return torch.exp(x)

    def inverse(self, y):
        return torch.log(y)

    def backward(self, dy, y):
        return dy * y


def relu_grad(dy, x):
    return dy * (x > 0).to(dy.dtype)


def create_activation(activation='sigmoid'):
    if isinstance(activation, nn.Module):
        return activation
    if activation == 'sigmoid':
        return SigmoidLayer()
    elif activation == 'sigmoid2':
        return Sigmoid2Layer()
    elif activation == 'exp':
        return ExpLayer()
    raise NotImplementedError('Unknown activation: %s' % activation)
