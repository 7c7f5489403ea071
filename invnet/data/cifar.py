import torch
from torch.utils.data import DataLoader
import torchvision.transforms as transforms
import numpy as np
from invnet.data.sampling import NSamplesRandomSampler


def tonumpy_fn(x):
    return np.array(x.getdata()).reshape(x.size[1], x.size[0], 3)


def random_lr_flip_fn(x):
    return np.copy(x[:, ::-1, :]) if np.random.random() >= 0.5 else x


def dequantize_fn(x, n_bins=256):
    """Uniform dequantization of integer pixel values into [-0.5, 0.5)"""
    x = x.astype(np.float32)
    return (x + np.random.uniform(size=x.shape).astype(np.float32)) / n_bins - 0.5


def reformat_fn(x):
    return x.transpose(2, 0, 1).astype(np.float32)


def get_cifar_data_loaders(dataset, data_dir, max_iterations, batch_size, workers, seed=None):
    """Loaders of dequantized CIFAR images in [-0.5, 0.5), the train loader yields max_iterations batches"""
    train_set = dataset(root=data_dir, train=True, download=True)
    valid_set = dataset(root=data_dir, train=False, download=True)

    tonumpy = transforms.Lambda(tonumpy_fn)
    randomlrflip = transforms.Lambda(random_lr_flip_fn)
    dequantize = transforms.Lambda(dequantize_fn)
    reformat = transforms.Lambda(reformat_fn)
    totensor = transforms.Lambda(torch.from_numpy)
    train_set.transform = transforms.Compose([
        tonumpy,
        randomlrflip,
        dequantize,
        reformat,
        totensor
    ])
    valid_set.transform = transforms.Compose([
        tonumpy,
        dequantize,
        reformat,
        totensor
    ])
    sampler = NSamplesRandomSampler(train_set, max_iterations * batch_size, seed=seed)

    train_loader = DataLoader(train_set,
                              batch_size=batch_size, shuffle=False,
                              sampler=sampler, num_workers=workers,
                              pin_memory=True)

    val_loader = DataLoader(valid_set,
                            batch_size=batch_size, shuffle=False,
                            num_workers=workers, pin_memory=True)

    return train_loader, val_loader
