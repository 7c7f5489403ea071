import time
import logging
import torch
import numpy as np
from invnet.utils.stats import AverageMeter, MeterGroup
from invnet.utils.log import SummaryWriter
from invnet.utils.loss import log_likelihood, log_likelihood_grad, bits_per_dim

logger = logging.getLogger('trainer')


def negative_log_likelihood(model, x):
    """Forward pass of a flow, returns ``(nll, z)`` with the nll averaged over the batch"""
    z, logdet = model.forward(x)
    return -log_likelihood(z) - logdet, z


def validate(model, val_loader, device, n_bins=None):
    """validation sub-loop, returns the average negative log-likelihood and bits per dimension"""
    batch_time = AverageMeter()
    metrics = MeterGroup('loss', 'bpd')

    end = time.time()
    with torch.no_grad():
        for x, _ in val_loader:
            x = x.to(device)
            nll, _ = negative_log_likelihood(model, x)
            metrics.update(n=x.size(0), loss=nll.item(), bpd=float(bits_per_dim(nll.item(), x.shape[1:],
                                                                                  n_bins=n_bins)))
            batch_time.update(time.time() - end)
            end = time.time()

    logger.info('Test: [{0}/{0}]\t'
                'Time {batch_time.val:.3f} ({batch_time.avg:.3f})\t'
                'NLL {loss.val:.4f} ({loss.avg:.4f})\t'
                'Bits/dim {bpd.val:.3f} ({bpd.avg:.3f})\t'.format(len(val_loader), batch_time=batch_time,
                                                                  loss=metrics['loss'], bpd=metrics['bpd']))

    return metrics['loss'].avg, metrics['bpd'].avg

def get_model_parameters_count(model):
    return np.sum([np.prod([int(e) for e in p.shape]) for p in model.parameters()])


def train(manager,
          train_loader,
          test_loader,
          start_iter,
          disp_iter=100,
          save_iter=10000,
          valid_iter=1000,
          use_cuda=False,
          n_bins=None,
          clip_grad_norm=None):
    """
    Maximum likelihood training of a flow with the memory efficient backward pass

    The forward pass runs without autograd, the gradients are computed by ``model.backward`` which
    reconstructs the activations of every layer from its output. The updates are done by the
    optimizer of the manager.
    """
    device = torch.device('cpu' if not use_cuda else 'cuda')
    model, optimizer = manager.model, manager.optimizer

    logger.info('Model parameters: {}'.format(get_model_parameters_count(model)))

    if use_cuda:
        model_mem_allocation = torch.cuda.memory_allocated(device)
        logger.info('Model memory allocation: {}'.format(model_mem_allocation))
    else:
        model_mem_allocation = None

    writer = SummaryWriter(manager.log_dir)
    writer.truncate(start_iter)
    data_time = AverageMeter()
    batch_time = AverageMeter()
    metrics = MeterGroup('loss', 'bpd')
    act_mem_activations = AverageMeter()

    # the sampler holds max_iterations batches, a resumed run leaves out the ones already trained on
    max_iterations = len(train_loader.sampler) // train_loader.batch_size
    train_loader.sampler.skip(start_iter * train_loader.batch_size)
    end = time.time()
    for ind, (x, _) in enumerate(train_loader):
        iteration = ind + 1 + start_iter

        if iteration > max_iterations:
            logger.info('maximum number of iterations reached: {}/{}'.format(iteration, max_iterations))
            break

        model.train()

        data_time.update(time.time() - end)
        end = time.time()
        x = x.to(device)

        with torch.no_grad():
            nll, z = negative_log_likelihood(model, x)

        if use_cuda:
            activation_mem_allocation = torch.cuda.memory_allocated(device) - model_mem_allocation
            act_mem_activations.update(activation_mem_allocation, iteration)

        if torch.isnan(nll):
            raise ValueError("Loss became NaN during iteration {}".format(iteration))

        optimizer.zero_grad()
        model.backward(-log_likelihood_grad(z), z)
        if clip_grad_norm is not None:
            torch.nn.utils.clip_grad_norm_(model.parameters(), clip_grad_norm)
        optimizer.step()

        batch_time.update(time.time() - end)
        metrics.update(n=x.size(0), loss=nll.item(), bpd=float(bits_per_dim(nll.item(), x.shape[1:], n_bins=n_bins)))

        if iteration % disp_iter == 0:
            act = ''
            if model_mem_allocation is not None:
                act = 'ActMem {act.val:.3f} ({act.avg:.3f})'.format(act=act_mem_activations)
            logger.info('iteration: [{0}/{1}]\t'
                        'Time {batch_time.val:.3f} ({batch_time.avg:.3f})\t'
                        'Data {data_time.val:.3f} ({data_time.avg:.3f})\t'
                        'NLL {loss.val:.4f} ({loss.avg:.4f})\t'
                        'Bits/dim {bpd.val:.3f} ({bpd.avg:.3f})\t'
                        '{act}'
                        .format(iteration, max_iterations,
                                batch_time=batch_time, data_time=data_time,
                                loss=metrics['loss'], bpd=metrics['bpd'], act=act))
            writer.add_scalars(metrics.averages(), iteration, prefix='train_')
            metrics.reset()
            data_time.reset()
            batch_time.reset()
            if use_cuda:
                writer.add_scalar('act_mem_allocation', act_mem_activations.avg, iteration)
                act_mem_activations.reset()

        if iteration % valid_iter == 0:
            test_loss, test_bpd = validate(model, test_loader, device=device, n_bins=n_bins)
            writer.add_scalars({'loss': test_loss, 'bpd': test_bpd}, iteration, prefix='test_')

        if iteration % save_iter == 0:
            manager.save_train_state(iteration)
            writer.flush()

        end = time.time()

    writer.close()
