class AverageMeter(object):
    """Computes and stores the average and current value"""
    def __init__(self):
        self.reset()

    def reset(self):
        self.val = 0
        self.avg = 0
        self.sum = 0
        self.count = 0

    def update(self, val, n=1):
        self.val = val
        self.sum += val * n
        self.count += n
        self.avg = self.sum / self.count


class MeterGroup(object):
    """Named meters that are updated together, e.g. the nll and bits per dimension of every batch

    Example
    -------
        >>> metrics = MeterGroup('loss', 'bpd')
        >>> metrics.update(n=64, loss=3.1, bpd=4.2)
        >>> metrics['bpd'].avg
        4.2
    """
    def __init__(self, *names):
        self.names = names
        self.meters = dict([(name, AverageMeter()) for name in names])

    def __getitem__(self, name):
        return self.meters[name]

    def update(self, n=1, **values):
        for name, value in values.items():
            self.meters[name].update(value, n)

    def averages(self):
        return dict([(name, self.meters[name].avg) for name in self.names])

    def reset(self):
        for meter in self.meters.values():
            meter.reset()
