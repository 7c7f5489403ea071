import json
import os
import logging


logger = logging.getLogger('config')


class Config(dict):
    """Local settings (``data_dir`` and ``results_dir``) read from config.json

    When no config.json has been created next to this file the shipped config.json.example is used.
    """
    def __init__(self, dic=None, verbose=False):
        super(Config, self).__init__()
        if dic is None:
            fname = self.get_filename()
            if not os.path.exists(fname):
                fname = self.get_example_filename()
            if verbose:
                logger.info("loading default {0}".format(fname))
            with open(fname, "r") as f:
                dic = json.load(f)
        self.update(dic)

    @staticmethod
    def get_filename():
        return os.path.join(Config.get_dir(), "config.json")

    @staticmethod
    def get_example_filename():
        return os.path.join(Config.get_dir(), "config.json.example")

    @staticmethod
    def get_dir():
        return os.path.dirname(__file__)
