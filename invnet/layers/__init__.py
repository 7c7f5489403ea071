from invnet.layers.base import InvertibleLayer, Layer
from invnet.layers.activations import SigmoidLayer, Sigmoid2Layer, ExpLayer, create_activation
from invnet.layers.squeeze import ShuffleLayer, WaveletLayer, create_squeezer
from invnet.layers.conv1x1 import Conv1x1
from invnet.layers.actnorm import ActNorm
from invnet.layers.residual import ResidualBlock, ModuleBlock
from invnet.layers.coupling_glow import CouplingLayerGlow, create_coupling_glow
from invnet.layers.conditional_glow import ConditionalLayerGlow
from invnet.layers.cond_spade import CondCouplingLayerSpade
from invnet.layers.hyperbolic import HyperbolicLayer
from invnet.layers.revop import InvertibleModuleWrapper, is_invertible_module

__all__ = [
    'InvertibleLayer',
    'Layer',
    'SigmoidLayer',
    'Sigmoid2Layer',
    'ExpLayer',
    'create_activation',
    'ShuffleLayer',
    'WaveletLayer',
    'create_squeezer',
    'Conv1x1',
    'ActNorm',
    'ResidualBlock',
    'ModuleBlock',
    'CouplingLayerGlow',
    'create_coupling_glow',
    'ConditionalLayerGlow',
    'CondCouplingLayerSpade',
    'HyperbolicLayer',
    'InvertibleModuleWrapper',
    'is_invertible_module'
]
