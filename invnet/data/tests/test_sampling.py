import pytest
from invnet.data.sampling import NSamplesRandomSampler
import torch.utils.data as data
import numpy as np


class IndexDataset(data.Dataset):
    def __init__(self, elements):
        self.elements = elements

    def __getitem__(self, idx):
        return idx, idx

    def __len__(self):
        return self.elements


@pytest.mark.parametrize('nsamples,data_samples', [(1, 1), (14, 10), (10, 14), (5, 1), (0, 10),
                                                   (np.int64(12), 3)])
def test_random_sampler_passes(nsamples, data_samples):
    """Every full pass over the dataset is a permutation, the last pass may be cut short"""
    sampler = NSamplesRandomSampler(IndexDataset(data_samples), nsamples=nsamples)
    elements = list(sampler)
    assert len(elements) == nsamples == len(sampler)
    assert all([isinstance(e, int) for e in elements])
    for start in range(0, len(elements), data_samples):
        block = elements[start:start + data_samples]
        assert len(set(block)) == len(block)
        assert all([0 <= e < data_samples for e in block])


def test_random_sampler_assign_nsamples():
    sampler = NSamplesRandomSampler(IndexDataset(4), nsamples=-1)
    sampler.nsamples = np.array(6, dtype=np.int64)
    assert isinstance(sampler.nsamples, int)
    assert len(list(sampler)) == 6


def test_random_sampler_seed():
    first = list(NSamplesRandomSampler(IndexDataset(7), nsamples=21, seed=3))
    second = list(NSamplesRandomSampler(IndexDataset(7), nsamples=21, seed=3))
    assert first == second
    assert sorted(first) == sorted(list(range(7)) * 3)


def test_random_sampler_skip():
    """A resumed run continues with the indices that were not consumed yet"""
    full = list(NSamplesRandomSampler(IndexDataset(5), nsamples=12, seed=0))
    sampler = NSamplesRandomSampler(IndexDataset(5), nsamples=12, seed=0)
    sampler.skip(8)
    assert len(sampler) == 4
    assert list(sampler) == full[8:]
    sampler.skip(20)
    assert len(sampler) == 0
    assert list(sampler) == []


def test_random_sampler_empty_dataset():
    assert list(NSamplesRandomSampler(IndexDataset(0), nsamples=3)) == []
