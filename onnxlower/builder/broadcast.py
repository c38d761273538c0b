from __future__ import annotations

from typing import Any, Optional, Tuple

import numpy as np

from onnxlower.builder.ir import OperatorIR
from onnxlower.builder.shape import UNKNOWN_DIM, Shape
from onnxlower.builder.shape_tensor import concat, fill, shape_of
from onnxlower.builder.weights import WeightBuffer
from onnxlower.utils.errors import InternalInconsistencyError, InvalidInputError


def _as_shape(shape: Any) -> Shape:
    if isinstance(shape, Shape):
        return shape
    return Shape(tuple(shape))


def _align(shape_a: Shape, shape_b: Shape) -> Tuple[Shape, Shape]:
    nb_dims = max(shape_a.rank, shape_b.rank)
    return (
        shape_a.prepend_ones(nb_dims - shape_a.rank),
        shape_b.prepend_ones(nb_dims - shape_b.rank),
    )


def validate_broadcast(shape_a: Any, shape_b: Any) -> None:
    """Raise ``InvalidInputError`` unless the shapes broadcast under numpy rules.

    Unknown dimensions are assumed compatible; the check is deferred to run time.
    """
    shape_a = _as_shape(shape_a)
    shape_b = _as_shape(shape_b)
    first, second = _align(shape_a, shape_b)
    for a, b in zip(first, second):
        if a == UNKNOWN_DIM or b == UNKNOWN_DIM:
            continue
        if a == b or a == 1 or b == 1:
            continue
        raise InvalidInputError(
            f"Cannot broadcast shapes that have incompatible dimensions! "
            f"first_shape={shape_a} second_shape={shape_b}",
            reason_code="incompatible_broadcast",
        )


def _combine_dim(a: int, b: int) -> int:
    if a == UNKNOWN_DIM or b == UNKNOWN_DIM:
        other = b if a == UNKNOWN_DIM else a
        return other if other > 1 else UNKNOWN_DIM
    if a == 1:
        return b
    return a


def combine_broadcast_shapes(shape_a: Any, shape_b: Any, shape_c: Optional[Any] = None) -> Shape:
    """Broadcast result shape. The three-operand form folds pairwise."""
    validate_broadcast(shape_a, shape_b)
    first, second = _align(_as_shape(shape_a), _as_shape(shape_b))
    combined = Shape(tuple(_combine_dim(a, b) for a, b in zip(first, second)))
    if shape_c is None:
        return combined
    return combine_broadcast_shapes(combined, shape_c)


def broadcast_tensor(ctx: Any, tensor_name: str, nb_dims: int) -> str:
    """Prepend size-1 axes to ``tensor_name`` until its rank is ``nb_dims``.

    Returns the name of the reshaped tensor, or the input name when the rank
    already matches.
    """
    shape = ctx.get_tensor_shape(tensor_name)
    if shape is None:
        raise InternalInconsistencyError(
            f"Cannot broadcast tensor '{tensor_name}' of unknown rank",
            reason_code="unknown_rank",
        )
    rank = len(shape)
    if rank > nb_dims:
        raise InternalInconsistencyError(
            f"Cannot broadcast a higher rank tensor to a lower rank! "
            f"tensor='{tensor_name}' rank={rank} target_rank={nb_dims}",
            reason_code="broadcast_rank_decrease",
        )
    if rank == nb_dims:
        return tensor_name

    new_shape = [1] * (nb_dims - rank) + [int(d) for d in shape]
    weights = ctx.get_constant_weights(tensor_name)
    if weights is not None and weights:
        # Constants are re-tagged with the raised shape; the bytes are shared.
        reshaped = WeightBuffer(
            weights.dtype,
            weights.values,
            weights.shape.prepend_ones(nb_dims - rank),
            name=f"{tensor_name}_broadcast",
            borrowed=weights.borrowed,
        )
        return ctx.emit_constant(reshaped)

    options = {}
    if all(d >= 0 for d in shape):
        shape_name = ctx.add_const_tensor(
            f"{tensor_name}_broadcast_shape",
            np.asarray(new_shape, dtype=np.int32),
        )
        options["newShape"] = list(new_shape)
    else:
        shape_name = concat(
            ctx,
            fill(ctx, 1, nb_dims - rank),
            shape_of(ctx, tensor_name),
        ).to_tensor(ctx)

    output_name = ctx.add_intermediate_tensor(
        f"{tensor_name}_broadcast",
        ctx.get_tensor_dtype(tensor_name),
        new_shape,
    )
    ctx.add_operator(
        OperatorIR(
            op_type="RESHAPE",
            inputs=[tensor_name, shape_name],
            outputs=[output_name],
            options=options,
        )
    )
    return output_name


def broadcast_tensors(ctx: Any, *tensor_names: str) -> Tuple[str, ...]:
    """Raise every tensor to the largest rank among them."""
    ranks = []
    for name in tensor_names:
        shape = ctx.get_tensor_shape(name)
        if shape is None:
            raise InternalInconsistencyError(
                f"Cannot broadcast tensor '{name}' of unknown rank",
                reason_code="unknown_rank",
            )
        ranks.append(len(shape))
    nb_dims = max(ranks) if ranks else 0
    return tuple(broadcast_tensor(ctx, name, nb_dims) for name in tensor_names)

