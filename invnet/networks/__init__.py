from invnet.networks.glow import NetworkGlow
from invnet.networks.conditional_glow import NetworkConditionalGlow
from invnet.networks.conditional_glow_frank import NetworkConditionalGlowFrank
from invnet.networks.hyperbolic import NetworkHyperbolic
from invnet.networks.loop import NetworkLoop

__all__ = [
    'NetworkGlow',
    'NetworkConditionalGlow',
    'NetworkConditionalGlowFrank',
    'NetworkHyperbolic',
    'NetworkLoop'
]
