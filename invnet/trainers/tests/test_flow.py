import pytest
import numpy as np
import torch
import torch.nn as nn

from invnet.experiment.manager import ExperimentManager
from invnet.data.synthetic import GaussianBlobs, get_synthetic_data_loaders
from invnet.networks.glow import NetworkGlow
from invnet.trainers.flow import train, validate, negative_log_likelihood, get_model_parameters_count
from invnet.utils.loss import log_likelihood


class NaNFlow(nn.Module):
    def __init__(self):
        super(NaNFlow, self).__init__()
        self.scale = nn.Parameter(torch.ones(1))

    def forward(self, x):
        return x * self.scale * float('nan'), torch.zeros(())

    def backward(self, dz, z):
        return dz, z


def _loaders(max_iterations=4, batch_size=2):
    params = {'n_samples': 4, 'channels': 2, 'size': [8, 8]}
    return get_synthetic_data_loaders(GaussianBlobs, None, max_iterations, batch_size, workers=0,
                                      dataset_params=params)


def test_negative_log_likelihood():
    torch.manual_seed(42)
    model = NetworkGlow(2, 4, 1, 1)
    x = torch.randn(3, 2, 4, 4)
    with torch.no_grad():
        nll, z = negative_log_likelihood(model, x)
        _, logdet = model.forward(x)
    assert torch.allclose(nll, -log_likelihood(z) - logdet)


def test_get_model_parameters_count():
    assert get_model_parameters_count(nn.Conv2d(2, 3, 1)) == 9


def test_validate():
    torch.manual_seed(42)
    _, val_loader = _loaders()
    model = NetworkGlow(2, 4, 2, 1, split_scales=True)
    loss, bpd = validate(model, val_loader, torch.device('cpu'), n_bins=256)
    assert np.isfinite(loss)
    assert np.isfinite(bpd)


def test_train_updates_parameters(tmp_path):
    torch.manual_seed(42)
    train_loader, val_loader = _loaders()
    model = NetworkGlow(2, 4, 2, 1, split_scales=True)
    optimizer = torch.optim.Adam(model.parameters(), lr=1e-2)
    manager = ExperimentManager(str(tmp_path / "exp"), model, optimizer)
    manager.make_dirs()
    with torch.no_grad():
        model.forward(next(iter(val_loader))[0])
    initial = [p.detach().clone() for p in model.parameters()]
    train(manager, train_loader, val_loader, start_iter=0, disp_iter=2, save_iter=4, valid_iter=2,
          clip_grad_norm=1.0)
    assert manager.get_last_model_iteration() == 4
    assert any([not torch.equal(p, p0) for p, p0 in zip(model.parameters(), initial)])


def test_train_nan_loss(tmp_path):
    train_loader, val_loader = _loaders()
    model = NaNFlow()
    manager = ExperimentManager(str(tmp_path / "exp"), model, torch.optim.SGD(model.parameters(), lr=0.1))
    manager.make_dirs()
    with pytest.raises(ValueError):
        train(manager, train_loader, val_loader, start_iter=0)
