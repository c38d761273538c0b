from typing import Any, List, Sequence, Union

import numpy as np
from onnx import TensorProto

from onnxlower.builder.shape import Shape
from onnxlower.builder.weights import WeightBuffer
from onnxlower.utils.enums import get_dtype_name, get_dtype_size, numpy_dtype_from_onnx
from onnxlower.utils.errors import (
    InternalInconsistencyError,
    InvalidInputError,
    UnsupportedError,
)


def convert_axis(
    *,
    axis: int,
    tensor_rank: int,
) -> int:
    """Convert a possibly negative ONNX axis into the range [0, tensor_rank).

    Parameters
    ----------
    axis: int
        Axis value to be converted

    tensor_rank: int
        Number of ranks of the tensor specified by axis

    Returns
    ----------
    converted_axis: int
        Converted axis
    """
    # Convert a negative number of axis to a positive number
    converted_axis = axis if axis >= 0 else axis + tensor_rank
    if converted_axis < 0 or converted_axis >= tensor_rank:
        raise InvalidInputError(
            f"Axis {axis} is out of range for a tensor of rank {tensor_rank}",
            reason_code="axis_out_of_range",
        )
    return converted_axis


def div_ceil(n: int, d: int) -> int:
    """Ceiling division for non-negative numerators and positive divisors."""
    return (n - 1) // d + 1


def is_dynamic(shape: Union[Shape, Sequence[int]]) -> bool:
    return any(int(d) < 0 for d in shape)


def _scalar_to_weights(
    ctx: Any,
    values: np.ndarray,
    dtype: int,
    shape: Shape,
) -> WeightBuffer:
    np_dtype = numpy_dtype_from_onnx(dtype)
    if np_dtype is None:
        raise UnsupportedError(
            f"Cannot build constant of dtype {get_dtype_name(dtype)}",
            reason_code="unsupported_dtype",
        )
    weights = ctx.create_temp_weights(dtype, shape)
    weights.view(np_dtype)[:] = values.astype(np_dtype)
    return weights


def add_constant_scalar(
    ctx: Any,
    scalar: Union[int, float, bool],
    dtype: int,
    shape: Shape = Shape(),
) -> str:
    """Emit a constant holding a single value.

    Parameters
    ----------
    ctx: ImporterContext
        Importer context that owns the weights arena

    scalar: Union[int, float, bool]
        Value to store

    dtype: int
        ONNX element type of the constant

    shape: Shape
        Shape of the constant. Its volume must be 1.

    Returns
    ----------
    tensor_name: str
        Name of the emitted constant tensor
    """
    if shape.volume() != 1:
        raise InternalInconsistencyError(
            f"Cannot add constant scalar with a shape that has volume > 1. shape={shape}",
            reason_code="scalar_volume",
        )
    weights = _scalar_to_weights(ctx, np.asarray([scalar]), dtype, shape)
    weights.set_name("scalar_constant")
    return ctx.emit_constant(weights)


def add_constant(
    ctx: Any,
    values: Union[np.ndarray, Sequence[Any]],
    dtype: int,
    shape: Shape,
) -> str:
    """Emit a constant from a flat list of values.

    The number of values must equal the volume of ``shape`` and, when
    ``values`` is a numpy array, its element width must equal the width
    of ``dtype``.
    """
    arr = np.asarray(values).reshape(-1)
    if shape.volume() != int(arr.size):
        raise InternalInconsistencyError(
            f"Shape does not match number of values provided. shape={shape} count={arr.size}",
            reason_code="constant_volume",
        )
    if isinstance(values, np.ndarray) and values.dtype.itemsize != get_dtype_size(dtype):
        raise InternalInconsistencyError(
            f"ONNX dtype {get_dtype_name(dtype)} does not have the same size as the value type {values.dtype}",
            reason_code="constant_width",
        )
    weights = _scalar_to_weights(ctx, arr, dtype, shape)
    weights.set_name("constant")
    return ctx.emit_constant(weights)


def weights_to_vector(weights: WeightBuffer) -> List[int]:
    """Read INT32 / INT64 / BOOL weights as a list of Python ints.

    Parameters
    ----------
    weights: WeightBuffer
        Integer or boolean weights

    Returns
    ----------
    values: List[int]
        Flattened values
    """
    if weights.dtype not in (TensorProto.INT32, TensorProto.INT64, TensorProto.BOOL):
        raise InvalidInputError(
            f"Expected INT32, INT64 or BOOL weights, got {get_dtype_name(weights.dtype)}. "
            f"weights='{weights.get_name()}'",
            reason_code="unexpected_dtype",
        )
    np_dtype = numpy_dtype_from_onnx(weights.dtype)
    return [int(v) for v in weights.view(np_dtype).tolist()]
