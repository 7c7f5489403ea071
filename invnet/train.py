import argparse
import os
import logging
import torch

from invnet.config import Config
from invnet.experiment.manager import ExperimentManager
from invnet.experiment.factory import load_experiment_config, experiment_config_parser, list_experiments

import invnet.utils.log


logger = logging.getLogger('train')


def run_experiment(experiment_tags, data_dir, results_dir, start_fresh=False, use_cuda=False, workers=None,
                   experiments_file=None, seed=None, *args, **kwargs):
    """Train the flow described by the merged experiment tags, resuming from its last checkpoint

    Keyword arguments that are not consumed here (``n_bins``, ``clip_grad_norm``, ``disp_iter``, ...)
    override the trainer parameters of the configuration.

    Returns
    -------
        :obj:`invnet.experiment.manager.ExperimentManager`
            The manager of the experiment directory.

    """
    if not os.path.exists(data_dir):
        raise RuntimeError('Cannot find data_dir directory: {}'.format(data_dir))

    if not os.path.exists(results_dir):
        raise RuntimeError('Cannot find results_dir directory: {}'.format(results_dir))

    if seed is not None:
        logger.info('Seeding the random state with: {}'.format(seed))
        torch.manual_seed(seed)

    cfg = load_experiment_config(experiments_file, experiment_tags)
    logger.info(cfg)

    model, optimizer, trainer, trainer_params = experiment_config_parser(cfg, workers=workers, data_dir=data_dir)

    experiment_dir = os.path.join(results_dir, '_'.join(experiment_tags))
    manager = ExperimentManager(experiment_dir, model, optimizer)
    if start_fresh:
        logger.info('Starting fresh option enabled. Clearing all previous results...')
        manager.delete_dirs()
    manager.make_dirs()

    if use_cuda:
        manager.model = manager.model.cuda()
        import torch.backends.cudnn as cudnn
        cudnn.benchmark = True

    last_iter = manager.get_last_model_iteration()
    if last_iter > 0:
        logger.info('Continue experiment from iteration: {}'.format(last_iter))
        manager.load_train_state(last_iter)

    trainer_params.update({k: v for k, v in kwargs.items() if v is not None})

    trainer(manager, start_iter=last_iter, use_cuda=use_cuda, *args, **trainer_params)
    return manager


def main(data_dir=None, results_dir=None):
    # setup logging
    invnet.utils.log.setup(True)

    # specify defaults for arguments
    use_cuda = torch.cuda.is_available()
    workers = 4
    data_dir = Config()['data_dir'] if data_dir is None else data_dir
    results_dir = Config()['results_dir'] if results_dir is None else results_dir
    experiments_file = os.path.join(os.path.dirname(__file__), 'config', 'experiments.json')
    start_fresh = False

    # parse arguments
    parser = argparse.ArgumentParser(description='Train invertible networks by maximum likelihood.')
    parser.add_argument('experiment_tags', type=str, nargs='*',
                        help='Experiment tags to run and combine from the experiment config file')
    parser.add_argument('--list', dest='list_tags', action='store_true', default=False,
                        help='List the experiment tags of the experiments file and exit')
    parser.add_argument('--workers', dest='workers', type=int, default=workers,
                        help='Number of workers for data loading (Default: {})'.format(workers))
    parser.add_argument('--results-dir', dest='results_dir', type=str, default=results_dir,
                        help='Directory for storing results (Default: {})'.format(results_dir))
    parser.add_argument('--data-dir', dest='data_dir', type=str, default=data_dir,
                        help='Directory for input data (Default: {})'.format(data_dir))
    parser.add_argument('--experiments-file', dest='experiments_file', type=str, default=experiments_file,
                        help='Experiments file (Default: {})'.format(experiments_file))
    parser.add_argument('--fresh', dest='start_fresh', action='store_true', default=start_fresh,
                        help='Start with fresh experiment, clears all previous results (Default: {})'
                        .format(start_fresh))
    parser.add_argument('--no-cuda', dest='use_cuda', action='store_false', default=use_cuda,
                        help='Always disables GPU use (Default: use when available)')
    parser.add_argument('--seed', dest='seed', type=int, default=None,
                        help='Seed of the torch random state (Default: not seeded)')
    parser.add_argument('--n-bins', dest='n_bins', type=int, default=None,
                        help='Number of quantization bins of the data, enables dequantization noise and '
                             'the bits per dimension offset (Default: from the experiment config)')
    parser.add_argument('--clip-grad-norm', dest='clip_grad_norm', type=float, default=None,
                        help='Maximum norm of the parameter gradients (Default: from the experiment config)')
    parser.add_argument('--disp-iter', dest='disp_iter', type=int, default=None,
                        help='Log the training metrics every n iterations (Default: from the trainer)')
    args = parser.parse_args()

    if args.list_tags:
        for tag in list_experiments(args.experiments_file):
            print(tag)
        return

    if len(args.experiment_tags) == 0:
        parser.error('at least one experiment tag is required')

    if not use_cuda:
        logger.warning('CUDA is not available in the current configuration!!!')

    if not args.use_cuda:
        logger.warning('CUDA is disabled!!!')

    # run experiment given arguments
    run_experiment(
        args.experiment_tags,
        args.data_dir,
        args.results_dir,
        start_fresh=args.start_fresh,
        experiments_file=args.experiments_file,
        use_cuda=args.use_cuda, workers=args.workers, seed=args.seed,
        n_bins=args.n_bins, clip_grad_norm=args.clip_grad_norm, disp_iter=args.disp_iter)


if __name__ == '__main__':
    main()
