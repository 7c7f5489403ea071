import math
import torch
from torch.utils.data import Dataset, DataLoader

from invnet.data.sampling import NSamplesRandomSampler


class GaussianBlobs(Dataset):
    """Images made of a few random Gaussian bumps, a small smooth dataset for testing flows

    The constructor follows the torchvision datasets (root, train, download) so it can be used
    interchangeably with them in the experiment configuration. Every item is a ``(image, 0)`` pair.

    Arguments:
        root (str): unused, no data is stored on disk
        train (bool): the train and test splits are drawn with different seeds
        n_samples (int): number of images
        channels (int): number of channels
        size (int or tuple): spatial size, two or three dimensions
        n_blobs (int): number of bumps per image and channel
        noise (float): standard deviation of the additive white noise
    """
    def __init__(self, root=None, train=True, download=False, n_samples=256, channels=2, size=(16, 16),
                 n_blobs=3, noise=0.01, seed=0):
        self.root = root
        self.train = train
        size = (size, size) if isinstance(size, int) else tuple(size)
        generator = torch.Generator().manual_seed(seed if train else seed + 1)
        grids = torch.meshgrid(*[torch.linspace(0, 1, s) for s in size], indexing='ij')
        shape = (n_samples, channels, n_blobs) + (1,) * len(size)
        centers = [torch.rand(shape, generator=generator) for _ in size]
        width = 0.05 + 0.15 * torch.rand(shape, generator=generator)
        amplitude = torch.rand(shape, generator=generator)
        dist = sum([(g - c) ** 2 for g, c in zip(grids, centers)])
        self.data = torch.sum(amplitude * torch.exp(-dist / (2 * width ** 2)), dim=2)
        self.data = self.data + noise * torch.randn(self.data.shape, generator=generator)
        self.transform = None

    def __getitem__(self, idx):
        x = self.data[idx]
        if self.transform is not None:
            x = self.transform(x)
        return x, 0

    def __len__(self):
        return self.data.shape[0]


def get_synthetic_data_loaders(dataset, data_dir, max_iterations, batch_size, workers, dataset_params=None,
                               seed=None):
    dataset_params = {} if dataset_params is None else dataset_params
    train_set = dataset(root=data_dir, train=True, download=True, **dataset_params)
    valid_set = dataset(root=data_dir, train=False, download=True, **dataset_params)
    sampler = NSamplesRandomSampler(train_set, max_iterations * batch_size, seed=seed)

    train_loader = DataLoader(train_set, batch_size=batch_size, shuffle=False, sampler=sampler,
                              num_workers=workers, drop_last=True)
    val_loader = DataLoader(valid_set, batch_size=batch_size, shuffle=False, num_workers=workers,
                            drop_last=True)
    return train_loader, val_loader


def data_misfit_problem(n_data, size, batch_size, seed=0):
    """Random linear forward operator J and data d = J m for a loop unrolled inversion

    Returns the model m (B, 1, *size), the operator J (n_data, prod(size)) and the data d (B, n_data).
    """
    generator = torch.Generator().manual_seed(seed)
    size = (size, size) if isinstance(size, int) else tuple(size)
    n_model = int(math.prod(size))
    J = torch.randn(n_data, n_model, generator=generator) / math.sqrt(n_data)
    m = GaussianBlobs(n_samples=batch_size, channels=1, size=size, seed=seed).data
    d = m.reshape(batch_size, -1) @ J.t()
    return m, J, d
