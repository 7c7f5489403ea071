import torch
import invnet
from invnet.utils.loss import log_likelihood, log_likelihood_grad


# generate some random input data (batch_size, num_channels, y_elements, x_elements)
X = torch.rand(4, 2, 16, 16)

# a Glow network with 2 scales of 2 flow steps each, squeezing and splitting between the scales
G = invnet.NetworkGlow(n_in=2, n_hidden=16, L=2, K=2, split_scales=True)

# forward pass without autograd, nothing is kept in memory for the backward pass
with torch.no_grad():
    Z, logdet = G.forward(X)
loss = -log_likelihood(Z) - logdet

# the backward pass reconstructs the activations of every layer from its output
G.clear_grad()
dX, X_ = G.backward(-log_likelihood_grad(Z), Z)

# the reconstructed input matches the input and all parameters received a gradient
assert torch.allclose(X, X_, atol=1e-4)
assert all([p.grad is not None for p in G.get_params()])

# update the parameters with any torch optimizer
optimizer = torch.optim.Adam(G.parameters(), lr=1e-3)
optimizer.step()

# single layers can also be used inside regular autograd code, the wrapper frees the input after the
# forward pass and reconstructs it on the backward pass
layer = invnet.create_coupling_glow(n_in=2, n_hidden=16)
assert invnet.is_invertible_module(layer, test_input_shape=X.shape, atol=1e-5)
wrapper = invnet.InvertibleModuleWrapper(fn=layer, keep_input=True, keep_input_inverse=True)

Y = wrapper.forward(X)
X2 = wrapper.inverse(Y)
assert torch.allclose(X, X2, atol=1e-5)
