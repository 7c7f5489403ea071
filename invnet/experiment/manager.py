import os
import glob
import torch
import logging
import shutil


class ExperimentManager(object):
    """Directory layout and checkpoints of an experiment

    ``<experiment_dir>/state/model/<iteration>.pt`` and ``<experiment_dir>/state/optimizer/<iteration>.pt``
    hold the network and optimizer states, ``<experiment_dir>/log`` the scalar summaries.
    """

    def __init__(self, experiment_dir, model=None, optimizer=None):
        self.logger = logging.getLogger(type(self).__name__)
        self.experiment_dir = experiment_dir
        self.model = model
        self.optimizer = optimizer
        self.model_dir = os.path.join(self.experiment_dir, "state", "model")
        self.optim_dir = os.path.join(self.experiment_dir, "state", "optimizer")
        self.log_dir = os.path.join(self.experiment_dir, "log")
        self.dirs = (self.experiment_dir, self.model_dir, self.log_dir, self.optim_dir)

    def make_dirs(self):
        for d in self.dirs:
            os.makedirs(d, exist_ok=True)
        if not self.all_dirs_exists():
            raise RuntimeError('Could not create the experiment directories in: {}'.format(self.experiment_dir))

    def delete_dirs(self):
        for d in self.dirs:
            if os.path.exists(d):
                shutil.rmtree(d)

    def any_dir_exists(self):
        return any([os.path.exists(d) for d in self.dirs])

    def all_dirs_exists(self):
        return all([os.path.exists(d) for d in self.dirs])

    def _state_fname(self, directory, iteration):
        return os.path.join(directory, "{}.pt".format(iteration))

    def save_model_state(self, iteration):
        model_fname = self._state_fname(self.model_dir, iteration)
        self.logger.info("Saving model state to: {}".format(model_fname))
        torch.save(self.model.state_dict(), model_fname)

    def load_model_state(self, iteration):
        model_fname = self._state_fname(self.model_dir, iteration)
        self.logger.info("Loading model state from: {}".format(model_fname))
        self.model.load_state_dict(torch.load(model_fname))

    def save_optimizer_state(self, iteration):
        optim_fname = self._state_fname(self.optim_dir, iteration)
        self.logger.info("Saving optimizer state to: {}".format(optim_fname))
        torch.save(self.optimizer.state_dict(), optim_fname)

    def load_optimizer_state(self, iteration):
        optim_fname = self._state_fname(self.optim_dir, iteration)
        self.logger.info("Loading optimizer state from {}".format(optim_fname))
        self.optimizer.load_state_dict(torch.load(optim_fname))

    def save_train_state(self, iteration):
        self.save_model_state(iteration)
        self.save_optimizer_state(iteration)

    def load_train_state(self, iteration):
        self.load_model_state(iteration)
        self.load_optimizer_state(iteration)

    def get_last_model_iteration(self):
        iterations = [int(os.path.basename(e).split(".")[0]) for e in glob.glob(os.path.join(self.model_dir, "*.pt"))]
        return max([0] + iterations)

    def load_last_train_state(self):
        self.load_train_state(self.get_last_model_iteration())
