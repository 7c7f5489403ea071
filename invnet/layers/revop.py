# -*- coding: utf-8 -*-
import warnings
import torch
import torch.nn as nn
from torch.utils.checkpoint import get_device_states, set_device_states


def _pack_if_no_tuple(x):
    if not isinstance(x, tuple):
        return (x, )
    return x


def _without_logdet(module, fn):
    """Wrap ``fn`` so the trailing log-determinant output of a logdet layer is dropped"""
    def wrapped(*args):
        out = fn(*args)
        if getattr(module, 'logdet', False) and isinstance(out, tuple):
            out = out[:-1]
            if len(out) == 1:
                return out[0]
        return out
    return wrapped


def _inverse_from_outputs(module):
    """Inverse that accepts the full forward output, ignoring a trailing log-determinant"""
    def wrapped(*outputs):
        if getattr(module, 'logdet', False):
            outputs = outputs[:-1]
        return module.inverse(*outputs)
    return wrapped


def _storage_ptr(x):
    return x.untyped_storage().data_ptr()


class InvertibleCheckpointFunction(torch.autograd.Function):
    @staticmethod
    def forward(ctx, fn, fn_inverse, keep_input, num_bwd_passes, preserve_rng_state, num_inputs, *inputs_and_weights):
        # store in context
        ctx.fn = fn
        ctx.fn_inverse = fn_inverse
        ctx.keep_input = keep_input
        ctx.weights = inputs_and_weights[num_inputs:]
        ctx.num_bwd_passes = num_bwd_passes
        ctx.num_inputs = num_inputs
        ctx.preserve_rng_state = preserve_rng_state
        if preserve_rng_state:
            ctx.fwd_cpu_state = torch.get_rng_state()
            # Don't eagerly initialize the cuda context by accident.
            ctx.had_cuda_in_fwd = False
            if torch.cuda._initialized:
                ctx.had_cuda_in_fwd = True
                ctx.fwd_gpu_devices, ctx.fwd_gpu_states = get_device_states(*inputs_and_weights)

        inputs = inputs_and_weights[:num_inputs]
        ctx.input_requires_grad = [element.requires_grad for element in inputs]

        with torch.no_grad():
            # Makes a detached copy which shares the storage
            x = [element.detach() for element in inputs]
            outputs = _pack_if_no_tuple(ctx.fn(*x))

        # Detaches y in-place (inbetween computations can now be discarded), views can only be detached out-of-place
        detached_outputs = tuple([element.detach() if element._is_view() else element.detach_()
                                  for element in outputs])

        # clear memory from inputs, unless an output lives in the same storage
        if not ctx.keep_input:
            output_ptrs = set(_storage_ptr(element) for element in detached_outputs)
            ctx.freed = []
            for element in inputs:
                freed = _storage_ptr(element) not in output_ptrs
                if freed:
                    element.untyped_storage().resize_(0)
                ctx.freed.append(freed)

        # store these tensor nodes for backward pass
        ctx.inputs = [inputs] * num_bwd_passes
        ctx.outputs = [detached_outputs] * num_bwd_passes

        return detached_outputs

    @staticmethod
    def backward(ctx, *grad_outputs):  # pragma: no cover
        if not torch.autograd._is_checkpoint_valid():
            raise RuntimeError("InvertibleCheckpointFunction is not compatible with .grad(), "
                               "please use .backward() if possible")
        # retrieve input and output tensor nodes
        if len(ctx.outputs) == 0:
            raise RuntimeError("Trying to perform backward on the InvertibleCheckpointFunction for more than "
                               "{} times! Try raising `num_bwd_passes` by one.".format(ctx.num_bwd_passes))
        inputs = ctx.inputs.pop()
        outputs = ctx.outputs.pop()

        # recompute input if necessary
        if not ctx.keep_input:
            # Mimic the rng state that was present at this time during forward
            rng_devices = []
            if ctx.preserve_rng_state and ctx.had_cuda_in_fwd:
                rng_devices = ctx.fwd_gpu_devices
            with torch.random.fork_rng(devices=rng_devices, enabled=ctx.preserve_rng_state):
                if ctx.preserve_rng_state:
                    torch.set_rng_state(ctx.fwd_cpu_state)
                    if ctx.had_cuda_in_fwd:
                        set_device_states(ctx.fwd_gpu_devices, ctx.fwd_gpu_states)
                with torch.no_grad():
                    inputs_inverted = _pack_if_no_tuple(ctx.fn_inverse(*outputs))
                    for element_original, element_inverted, freed in zip(inputs, inputs_inverted, ctx.freed):
                        if freed:
                            element_original.set_(element_inverted)

        # compute gradients
        with torch.set_grad_enabled(True):
            detached_inputs = tuple([element.detach().requires_grad_() for element in inputs])
            temp_output = _pack_if_no_tuple(ctx.fn(*detached_inputs))

        # constant outputs (e.g. the zero log-determinant of an orthogonal layer) carry no graph
        pairs = [(out, grad) for out, grad in zip(temp_output, grad_outputs) if out.requires_grad]
        gradients = torch.autograd.grad(outputs=[out for out, _ in pairs], inputs=detached_inputs + ctx.weights,
                                        grad_outputs=[grad for _, grad in pairs], allow_unused=True)

        return (None, None, None, None, None, None) + gradients


class InvertibleModuleWrapper(nn.Module):
    def __init__(self, fn, keep_input=False, keep_input_inverse=False, num_bwd_passes=1,
                 disable=False, preserve_rng_state=True):
        """
        Plugs an invertible layer or network into regular ``torch.autograd`` training. The inputs are
        freed after the forward pass and reconstructed from the outputs during the backward pass.

        Parameters
        ----------
            fn : :obj:`torch.nn.Module`
                A module with a forward and an inverse function such that
                :math:`x == m.inverse(m.forward(x))`. For layers constructed with ``logdet=True`` the
                forward output is ``(*y, logdet)`` and the log-determinant is ignored by the inverse.

            keep_input : :obj:`bool`, optional
                Set to retain the input information on forward, by default it can be discarded since it will be
                reconstructed upon the backward pass.

            keep_input_inverse : :obj:`bool`, optional
                Set to retain the input information on inverse, by default it can be discarded since it will be
                reconstructed upon the backward pass.

            num_bwd_passes :obj:`int`, optional
                Number of backward passes to retain a link with the output. After the last backward pass the output
                is discarded and memory is freed.

            disable : :obj:`bool`, optional
                Renders the wrapper as `y = fn(x)` without any of the memory savings.

            preserve_rng_state : :obj:`bool`, optional
                Use the same RNG state during reconstruction of the inputs. By default this is True.

        """
        super(InvertibleModuleWrapper, self).__init__()
        self.disable = disable
        self.keep_input = keep_input
        self.keep_input_inverse = keep_input_inverse
        self.num_bwd_passes = num_bwd_passes
        self.preserve_rng_state = preserve_rng_state
        self._fn = fn

    def _weights(self):
        return tuple([p for p in self._fn.parameters() if p.requires_grad])

    def forward(self, *xin):
        """Forward operation :math:`R(x) = y`, returns the outputs of the wrapped module"""
        if not self.disable:
            y = InvertibleCheckpointFunction.apply(
                self._fn.forward,
                _inverse_from_outputs(self._fn),
                self.keep_input,
                self.num_bwd_passes,
                self.preserve_rng_state,
                len(xin),
                *(xin + self._weights()))
        else:
            y = self._fn(*xin)

        # If the layer only has one output, we unpack the tuple again
        if isinstance(y, tuple) and len(y) == 1:
            return y[0]
        return y

    def inverse(self, *yin):
        """Inverse operation :math:`R^{-1}(y) = x`"""
        if not self.disable:
            x = InvertibleCheckpointFunction.apply(
                self._fn.inverse,
                _without_logdet(self._fn, self._fn.forward),
                self.keep_input_inverse,
                self.num_bwd_passes,
                self.preserve_rng_state,
                len(yin),
                *(yin + self._weights()))
        else:
            x = self._fn.inverse(*yin)

        if isinstance(x, tuple) and len(x) == 1:
            return x[0]
        return x


def is_invertible_module(module_in, test_input_shape, test_input_dtype=torch.float32, atol=1e-6, random_seed=42):
    """Test if a :obj:`torch.nn.Module` is invertible

    Parameters
    ----------
    module_in : :obj:`torch.nn.Module`
        A torch.nn.Module to test.
    test_input_shape : :obj:`tuple` of :obj:`int` or :obj:`tuple` of :obj:`tuple` of :obj:`int`
        Dimensions of test tensor(s) object to perform the test with.
    test_input_dtype : :obj:`torch.dtype`, optional
        Data type of test tensor object to perform the test with.
    atol : :obj:`float`, optional
        Tolerance value used for comparing the outputs.
    random_seed : :obj:`int`, optional
        Use this value to seed the pseudo-random test inputs.

    Returns
    -------
        :obj:`bool`
            True if the input module is invertible, False otherwise.

    """
    if isinstance(module_in, InvertibleModuleWrapper):
        module_in = module_in._fn

    if not hasattr(module_in, "inverse"):
        return False

    def _is_shape(shape):
        return isinstance(shape, (tuple, list)) and all([isinstance(e, int) for e in shape])

    if _is_shape(test_input_shape):
        test_input_shape = (test_input_shape,)
    elif not (isinstance(test_input_shape, (tuple, list)) and all([_is_shape(e) for e in test_input_shape])):
        raise ValueError("test_input_shape should be of type Tuple[int, ...] or "
                         "Tuple[Tuple[int, ...], ...], but {} found".format(type(test_input_shape)))

    forward = _without_logdet(module_in, module_in.forward)

    def _allclose(inputs, reference):
        return all([torch.allclose(inp, ref, atol=atol) for inp, ref in zip(inputs, reference)])

    with torch.no_grad():
        torch.manual_seed(random_seed)
        test_inputs = tuple([torch.rand(shape, dtype=test_input_dtype) for shape in test_input_shape])
        test_outputs = _pack_if_no_tuple(forward(*test_inputs))
        if any([torch.equal(torch.zeros_like(e), e) for e in test_outputs]):  # pragma: no cover
            warnings.warn("Some outputs were detected to be all zeros, you might want to set a different random_seed.")

        reconstructed = _pack_if_no_tuple(module_in.inverse(*test_outputs))
        if not _allclose(reconstructed, test_inputs):
            return False
        if not _allclose(_pack_if_no_tuple(forward(*reconstructed)), test_outputs):  # pragma: no cover
            return False

    shared_inputs = set(test_inputs)
    if any([out in shared_inputs for out in test_outputs]):
        warnings.warn("Some inputs (*x) and outputs (*y) share the same tensor, this typically defeats the "
                      "memory savings of InvertibleModuleWrapper. E.g. an identity function.", UserWarning)
    return True
