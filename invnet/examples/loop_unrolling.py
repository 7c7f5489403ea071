# Loop unrolled inversion of a random linear forward operator (Putzky and Welling, 2019)
import torch
import invnet
from invnet.data.synthetic import data_misfit_problem


nx, ny = 16, 16
n_in = 4
n_hidden = 8
batch_size = 2
maxiter = 2

# observed data d = J m for a random operator J and smooth models m
m, J, d = data_misfit_problem(n_data=64, size=(nx, ny), batch_size=batch_size)

# unrolled loop with the identity as link function
UL = invnet.NetworkLoop(n_in, n_hidden, maxiter, psi=lambda eta: eta)

# initial state
eta_in = torch.zeros(batch_size, 1, nx, ny)
s_in = torch.randn(batch_size, n_in - 1, nx, ny)

# forward pass and residual, there is no target for the hidden state
with torch.no_grad():
    eta_out, s_out = UL.forward(eta_in, s_in, J, d)
deta = eta_out - m
ds = torch.zeros_like(s_out)

# backward pass, reconstructing the initial state
UL.clear_grad()
deta_in, ds_in, eta_, s_ = UL.backward(deta, ds, eta_out, s_out, J, d)
assert torch.allclose(eta_, eta_in, atol=1e-4)
assert torch.allclose(s_, s_in, atol=1e-4)

# update with a torch optimizer
optimizer = torch.optim.Adam(UL.parameters(), lr=1e-3)
optimizer.step()
UL.clear_grad()
