import torch
from torch.utils.data.sampler import Sampler


class NSamplesRandomSampler(Sampler):
    """Draws a fixed number of dataset indices, so a flow is trained for a number of iterations
    instead of a number of epochs.

    The indices are consecutive random permutations of the dataset, the last permutation is cut short
    when nsamples is not a multiple of the dataset size. A resumed training run calls ``skip`` with the
    number of indices that were consumed before the checkpoint.

    Arguments:
        data_source (Dataset): dataset to sample from
        nsamples (int): number of total samples. Note: will always be cast to int
        seed (int, optional): seed of the permutations, the global torch random state is used without it
    """

    @property
    def nsamples(self):
        return self._nsamples

    @nsamples.setter
    def nsamples(self, value):
        self._nsamples = int(value)

    def __init__(self, data_source, nsamples, seed=None):
        self.data_source = data_source
        self.nsamples = nsamples
        self.seed = seed
        self.offset = 0

    def skip(self, n):
        """Leave out the first n indices of every following pass"""
        self.offset = min(max(0, int(n)), self.nsamples)

    def _generator(self):
        if self.seed is None:
            return None
        generator = torch.Generator()
        generator.manual_seed(self.seed)
        return generator

    def __iter__(self):
        len_data_source = len(self.data_source)
        if len_data_source == 0 or self.nsamples <= self.offset:
            return iter([])
        generator = self._generator()
        num_blocks = (self.nsamples + len_data_source - 1) // len_data_source
        indices = torch.cat([torch.randperm(len_data_source, generator=generator) for _ in range(num_blocks)])
        return iter(indices[self.offset:self.nsamples].tolist())

    def __len__(self):
        return max(0, self.nsamples - self.offset)
