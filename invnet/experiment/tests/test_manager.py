from invnet.experiment.manager import ExperimentManager
from invnet.networks import NetworkGlow
import torch


def test_experiment_manager_dirs(tmp_path):
    exp_dir = tmp_path / "test_exp_dir"
    man = ExperimentManager(str(exp_dir))
    assert man.model is None
    assert man.optimizer is None
    assert not man.any_dir_exists()

    man.make_dirs()
    assert (exp_dir / "log").exists()
    assert (exp_dir / "state" / "model").exists()
    assert (exp_dir / "state" / "optimizer").exists()
    assert man.all_dirs_exists()

    man.delete_dirs()
    assert not exp_dir.exists()
    assert not man.any_dir_exists()
    assert man.get_last_model_iteration() == 0


def test_experiment_manager_states(tmp_path):
    torch.manual_seed(42)
    man = ExperimentManager(str(tmp_path / "test_exp_dir"))
    man.make_dirs()
    man.model = NetworkGlow(2, 4, 1, 1)
    x = torch.randn(4, 2, 4, 4)
    with torch.no_grad():
        man.model.forward(x)
    state = {k: v.clone() for k, v in man.model.state_dict().items()}
    man.optimizer = torch.optim.SGD(man.model.parameters(), lr=0.01, momentum=0.1)
    man.save_train_state(100)

    man.optimizer.zero_grad()
    with torch.no_grad():
        z, logdet = man.model.forward(x)
    man.model.backward(z / x.shape[0], z)
    man.optimizer.step()
    man.save_train_state(101)
    trained = {k: v.clone() for k, v in man.model.state_dict().items()}
    assert man.get_last_model_iteration() == 101

    man.load_train_state(100)
    assert all([torch.equal(v, state[k]) for k, v in man.model.state_dict().items()])
    assert len(man.optimizer.state_dict()['state']) == 0

    man.load_last_train_state()
    assert all([torch.equal(v, trained[k]) for k, v in man.model.state_dict().items()])
    assert len(man.optimizer.state_dict()['state']) > 0
    assert bool(man.model.flows[0].initialized)
