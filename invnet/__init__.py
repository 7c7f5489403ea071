# -*- coding: utf-8 -*-

"""Top-level package for invnet."""

__version__ = '0.1.0'


from invnet.layers import (ActNorm, Conv1x1, ResidualBlock, ModuleBlock, CouplingLayerGlow, create_coupling_glow,
                           ConditionalLayerGlow, CondCouplingLayerSpade, HyperbolicLayer, SigmoidLayer,
                           Sigmoid2Layer, ExpLayer, ShuffleLayer, WaveletLayer, InvertibleModuleWrapper,
                           is_invertible_module)
from invnet.networks import NetworkGlow, NetworkConditionalGlow, NetworkConditionalGlowFrank, NetworkHyperbolic, \
    NetworkLoop

__all__ = [
    'ActNorm',
    'Conv1x1',
    'ResidualBlock',
    'ModuleBlock',
    'CouplingLayerGlow',
    'create_coupling_glow',
    'ConditionalLayerGlow',
    'CondCouplingLayerSpade',
    'HyperbolicLayer',
    'SigmoidLayer',
    'Sigmoid2Layer',
    'ExpLayer',
    'ShuffleLayer',
    'WaveletLayer',
    'InvertibleModuleWrapper',
    'is_invertible_module',
    'NetworkGlow',
    'NetworkConditionalGlow',
    'NetworkConditionalGlowFrank',
    'NetworkHyperbolic',
    'NetworkLoop'
]
