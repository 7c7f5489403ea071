import os
import json
import logging
import sys
import time


LOG_FORMAT = "%(asctime)s [%(name)-15s] %(message)s"
DATE_FORMAT = "%y-%m-%d %H:%M:%S"


def setup(use_stdout=True, filename=None, log_level=logging.DEBUG):
    """Configure the root logger for a training run

    Handlers installed by an earlier call are replaced, so running several experiments in one process
    does not print every message more than once.

    Returns
    -------
        :obj:`logging.Logger`
            The root logger.

    """
    log = logging.getLogger('')
    log.setLevel(log_level)
    for handler in [h for h in log.handlers if getattr(h, 'invnet_handler', False)]:
        log.removeHandler(handler)
        handler.close()

    handlers = []
    if use_stdout:
        handlers.append(logging.StreamHandler(sys.stdout))
    if filename is not None:
        handlers.append(logging.FileHandler(filename))

    fmt = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    for handler in handlers:
        handler.invnet_handler = True
        handler.setLevel(log_level)
        handler.setFormatter(fmt)
        log.addHandler(handler)
    return log


class SummaryWriter(object):
    """Training curves of a flow (negative log-likelihood, bits per dimension, ...) stored as json

    ``<log_dir>/scalars.json`` maps every scalar name to a list of ``[wall_time, iteration, value]``
    entries. An existing file is loaded and extended, a resumed run drops the entries it is going to
    repeat with ``truncate``.
    """
    filename = "scalars.json"

    def __init__(self, log_dir):
        self.log_dir = log_dir
        self.path = os.path.join(log_dir, self.filename)
        self._summary = {}
        if os.path.exists(self.path):
            with open(self.path, "r") as f:
                self._summary = json.load(f)

    def add_scalar(self, name, value, iteration):
        self._summary.setdefault(name, []).append([time.time(), int(iteration), float(value)])

    def add_scalars(self, values, iteration, prefix=''):
        """Add a dict of scalars, e.g. ``{'loss': nll, 'bpd': bpd}`` with ``prefix='train_'``"""
        for name, value in values.items():
            self.add_scalar(prefix + name, value, iteration)

    def scalars(self, name):
        """Values of a scalar in the order they were added"""
        return [value for _, _, value in self._summary.get(name, [])]

    def iterations(self, name):
        return [iteration for _, iteration, _ in self._summary.get(name, [])]

    def truncate(self, iteration):
        """Drop every entry logged after the given iteration"""
        for name, entries in self._summary.items():
            self._summary[name] = [e for e in entries if e[1] <= iteration]

    def flush(self):
        with open(self.path, "w") as f:
            json.dump(self._summary, f)

    def close(self):
        self.flush()
