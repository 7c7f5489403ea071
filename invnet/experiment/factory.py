import copy
import importlib
import json
import logging


logger = logging.getLogger('factory')

REQUIRED_KEYS = ('model', 'model_params', 'optimizer', 'optimizer_params', 'data_loader', 'data_loader_params',
                 'trainer')


def get_attr_from_module(path):
    """Resolve a dotted path like ``invnet.networks.NetworkGlow`` to the object it names"""
    if '.' not in path:
        raise ValueError('Expected a dotted path module.attribute, got: {}'.format(path))
    module_name, attr = path.rsplit('.', 1)
    module = importlib.import_module(module_name)
    if not hasattr(module, attr):
        raise ValueError('Module {} has no attribute {}'.format(module_name, attr))
    return getattr(module, attr)


def list_experiments(experiments_file):
    """Names of the experiment tags in an experiments file, sorted"""
    with open(experiments_file, 'r') as f:
        return sorted(json.load(f).keys())


def load_experiment_config(experiments_file, experiment_tags):
    """Merge the configurations of the given experiment tags, later tags override earlier ones

    Raises
    ------
        KeyError
            If one of the tags is not defined in the experiments file.

    """
    with open(experiments_file, 'r') as f:
        data = json.load(f)
    unknown = [tag for tag in experiment_tags if tag not in data]
    if len(unknown) > 0:
        raise KeyError('Unknown experiment tags: {}, choose from: {}'.format(unknown, sorted(data.keys())))
    d = {}
    for tag in experiment_tags:
        _merge(build_dict(data, tag), d)
    d.pop('base', None)
    return d


def _merge(source, d):
    """Merge source into d, nested dicts are merged key by key"""
    for k, v in source.items():
        if isinstance(v, dict):
            d[k] = _merge(v, d.get(k, {}) if isinstance(d.get(k), dict) else {})
        else:
            d[k] = copy.deepcopy(v)
    return d


def build_dict(experiments_dict, experiment_name):
    """Configuration of an experiment with the chain of its ``base`` experiments resolved"""
    chain = []
    name = experiment_name
    while name is not None:
        if name in chain:
            raise RuntimeError('Circular dependency found: {}'.format(' -> '.join(chain + [name])))
        if name not in experiments_dict:
            raise KeyError('Unknown base experiment: {}'.format(name))
        chain.append(name)
        name = experiments_dict[name].get('base', None)

    d = {}
    for name in reversed(chain):
        _merge(experiments_dict[name], d)
    return d


def _instantiate(value):
    """Replace ``{"class": path, "params": {...}}`` entries by instances of the class they name"""
    if isinstance(value, dict):
        value = {k: _instantiate(v) for k, v in value.items()}
        if 'class' in value:
            return get_attr_from_module(value['class'])(**value.get('params', {}))
        return value
    if isinstance(value, list):
        return [_instantiate(v) for v in value]
    return value


def build_model(d):
    model_params = _instantiate(copy.deepcopy(d['model_params']))
    if 'architecture' in model_params:
        model_params['architecture'] = [tuple(e) for e in model_params['architecture']]
    model = get_attr_from_module(d['model'])(**model_params)
    logger.info('Built {} with {} parameters'.format(d['model'], sum([p.numel() for p in model.parameters()])))
    return model


def build_data_loaders(d, data_dir, workers=None):
    dl_params = copy.deepcopy(d['data_loader_params'])
    dl_params['dataset'] = get_attr_from_module(dl_params['dataset'])
    dl_params['data_dir'] = data_dir
    dl_params['workers'] = dl_params.get('workers', 0) if workers is None else workers
    return get_attr_from_module(d['data_loader'])(**dl_params)


def experiment_config_parser(d, data_dir, workers=None):
    """Instantiate the network, optimizer, data loaders and trainer of an experiment configuration

    Nested values of the form ``{"class": "invnet.layers.WaveletLayer", "params": {}}`` in the model
    parameters are instantiated, e.g. to pass a squeezer module to a multiscale network.

    Returns
    -------
        :obj:`tuple`
            ``(model, optimizer, trainer, trainer_params)`` where trainer is the training function and
            trainer_params holds the data loaders and the remaining keyword arguments of the trainer.

    Raises
    ------
        KeyError
            If the configuration misses one of the required keys.

    """
    missing = [k for k in REQUIRED_KEYS if k not in d]
    if len(missing) > 0:
        raise KeyError('Experiment configuration misses the keys: {}'.format(missing))

    trainer = get_attr_from_module(d['trainer'])
    model = build_model(d)

    optimizer = get_attr_from_module(d['optimizer'])
    optimizer = optimizer(model.parameters(), **d['optimizer_params'])

    train_loader, val_loader = build_data_loaders(d, data_dir, workers)

    trainer_params = copy.deepcopy(d.get('trainer_params', {}))
    trainer_params = dict(
        train_loader=train_loader,
        test_loader=val_loader,
        **trainer_params
    )

    return model, optimizer, trainer, trainer_params
