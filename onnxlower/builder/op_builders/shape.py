from __future__ import annotations

from typing import Any, List, Optional

import numpy as np

from onnxlower.builder.ir import OperatorIR
from onnxlower.builder.shape import volume
from onnxlower.builder.shape_tensor import (
    SHAPE_TENSOR_DTYPE,
    ShapeTensor,
    add,
    axes_to_interlace_subscripts,
    compute_slice_sizes,
    concat,
    decode_onnx_starts_and_ends,
    gather,
    interlace,
    iota,
    max_,
    min_,
    mul,
    shape_of,
    similar,
    sub,
)
from onnxlower.builder.transpose import (
    Permutation,
    is_transpose_required,
    transpose_weights,
)
from onnxlower.builder.weights import WeightBuffer
from onnxlower.utils.common_functions import convert_axis
from onnxlower.utils.enums import numpy_dtype_from_onnx, onnx_dtype_from_target
from onnxlower.utils.errors import InvalidInputError, UnsupportedError


def build_identity_op(node: Any, ctx: Any) -> None:
    input_name = node.inputs[0]
    output_name = node.outputs[0]
    ctx.ensure_tensor(input_name)

    weights = ctx.get_constant_weights(input_name)
    if weights is not None:
        ctx.emit_constant(weights, name=output_name)
        return

    input_shape = ctx.get_tensor_shape(input_name)
    if input_shape is None:
        raise UnsupportedError(
            f"Identity input '{input_name}' has unknown rank. op={node.name}",
            reason_code="unknown_rank",
        )
    ctx.ensure_tensor(
        output_name,
        dtype=ctx.get_tensor_dtype(input_name),
        shape=input_shape,
    )
    options = {}
    if all(d >= 0 for d in input_shape):
        options["newShape"] = [int(v) for v in input_shape]
    shape_name = shape_of(ctx, input_name).to_tensor(ctx)
    ctx.add_operator(
        OperatorIR(
            op_type="RESHAPE",
            inputs=[input_name, shape_name],
            outputs=[output_name],
            options=options,
        )
    )


def _read_perm(node: Any, rank: Optional[int]) -> List[int]:
    attr_perm = node.attrs.get("perm", None)
    if attr_perm is not None:
        return [int(v) for v in attr_perm]
    if rank is None:
        raise UnsupportedError(
            f"Transpose without perm needs a known input rank. op={node.name}",
            reason_code="unknown_rank",
        )
    return list(reversed(range(rank)))


def build_transpose_op(node: Any, ctx: Any) -> None:
    input_name = node.inputs[0]
    output_name = node.outputs[0]
    ctx.ensure_tensor(input_name)
    input_shape = ctx.get_tensor_shape(input_name)
    rank = len(input_shape) if input_shape is not None else None

    perm = _read_perm(node, rank)
    if sorted(perm) != list(range(len(perm))):
        raise InvalidInputError(
            f"Transpose perm {perm} is not a permutation. op={node.name}",
            reason_code="invalid_permutation",
        )
    if rank is not None and len(perm) != rank:
        raise InvalidInputError(
            f"Transpose perm {perm} does not match input rank {rank}. op={node.name}",
            reason_code="permutation_rank_mismatch",
        )
    permutation = Permutation(tuple(perm))

    weights = ctx.get_constant_weights(input_name)
    if weights is not None and weights and ctx.fold_constant_transposes:
        try:
            transposed = transpose_weights(ctx, weights, permutation)
        except UnsupportedError as ex:
            ctx.log(
                "verbose",
                f"Constant {input_name} cannot be transposed at import time, "
                f"emitting TRANSPOSE instead. reason={ex.reason_code}",
            )
        else:
            ctx.emit_constant(transposed, name=output_name)
            return

    output_shape = permutation.apply(input_shape).to_list() if input_shape is not None else None
    ctx.ensure_tensor(
        output_name,
        dtype=ctx.get_tensor_dtype(input_name),
        shape=output_shape,
    )

    if (
        input_shape is not None
        and all(d >= 0 for d in input_shape)
        and not is_transpose_required(input_shape, permutation)
    ):
        shape_const = ctx.add_const_tensor(
            f"{output_name}_transpose_shape",
            np.asarray(output_shape, dtype=np.int32),
        )
        ctx.add_operator(
            OperatorIR(
                op_type="RESHAPE",
                inputs=[input_name, shape_const],
                outputs=[output_name],
                options={"newShape": list(output_shape)},
            )
        )
        return

    perm_const = ctx.add_const_tensor(
        f"{output_name}_transpose_perm",
        np.asarray(perm, dtype=np.int32),
    )
    ctx.add_operator(
        OperatorIR(
            op_type="TRANSPOSE",
            inputs=[input_name, perm_const],
            outputs=[output_name],
        )
    )


def _slice_operand(
    node: Any,
    ctx: Any,
    input_index: int,
    attr_name: str,
) -> Optional[ShapeTensor]:
    name = node.input(input_index)
    if name is not None:
        ctx.ensure_tensor(name)
        return ShapeTensor.from_tensor(ctx, name)
    if attr_name in node.attrs:
        return ShapeTensor([int(v) for v in node.attrs[attr_name]])
    return None


def build_slice_op(node: Any, ctx: Any) -> None:
    data_name = node.inputs[0]
    output_name = node.outputs[0]
    ctx.ensure_tensor(data_name)
    data_shape = ctx.get_tensor_shape(data_name)
    if data_shape is None:
        raise UnsupportedError(
            f"Slice input '{data_name}' has unknown rank. op={node.name}",
            reason_code="unknown_rank",
        )
    rank = len(data_shape)

    # Opset 10+ passes starts/ends/axes/steps as inputs, opset 1 as attributes.
    starts = _slice_operand(node, ctx, 1, "starts")
    ends = _slice_operand(node, ctx, 2, "ends")
    axes = _slice_operand(node, ctx, 3, "axes")
    steps = _slice_operand(node, ctx, 4, "steps")
    if starts is None or ends is None:
        raise InvalidInputError(
            f"Slice requires starts and ends. op={node.name}",
            reason_code="missing_slice_bounds",
        )

    if axes is None:
        if not starts.size_known:
            raise UnsupportedError(
                f"Slice without axes needs starts of known length. op={node.name}",
                reason_code="dynamic_slice_axes",
            )
        axes_values = list(range(starts.size))
    else:
        if not axes.all_values_known:
            raise UnsupportedError(
                f"Slice axes must be constant. op={node.name}",
                reason_code="dynamic_slice_axes",
            )
        axes_values = [convert_axis(axis=a, tensor_rank=rank) for a in axes.values]
    if len(set(axes_values)) != len(axes_values):
        raise InvalidInputError(
            f"Slice axes {axes_values} must not repeat. op={node.name}",
            reason_code="duplicate_slice_axes",
        )
    for operand in (starts, ends, steps):
        if operand is not None and operand.size_known and operand.size != len(axes_values):
            raise InvalidInputError(
                f"Slice starts/ends/steps must match axes length {len(axes_values)}. op={node.name}",
                reason_code="slice_length_mismatch",
            )

    if steps is None:
        steps = ShapeTensor([1] * len(axes_values))
    if steps.all_values_known and any(s == 0 for s in steps.values):
        raise InvalidInputError(
            f"Slice step must not be 0. op={node.name} steps={steps.values}",
            reason_code="zero_slice_step",
        )

    dims = shape_of(ctx, data_name)
    subscripts = axes_to_interlace_subscripts(axes_values, rank)
    starts = interlace(ctx, similar(ctx, dims, 0), starts, subscripts)
    ends = interlace(ctx, dims, ends, subscripts)
    steps = interlace(ctx, similar(ctx, dims, 1), steps, subscripts)

    starts, ends = decode_onnx_starts_and_ends(ctx, dims, steps, starts, ends)
    sizes = compute_slice_sizes(ctx, starts, ends, steps, dims)

    if sizes.all_values_known:
        output_shape = sizes.values
    else:
        # Axes that are not sliced keep their extent.
        output_shape = [
            -1 if axis in axes_values else int(data_shape[axis])
            for axis in range(rank)
        ]
    ctx.ensure_tensor(
        output_name,
        dtype=ctx.get_tensor_dtype(data_name),
        shape=output_shape,
    )
    ctx.add_operator(
        OperatorIR(
            op_type="SLICE",
            inputs=[
                data_name,
                starts.to_tensor(ctx),
                sizes.to_tensor(ctx),
                steps.to_tensor(ctx),
            ],
            outputs=[output_name],
        )
    )


def _reshape_target(node: Any, ctx: Any) -> ShapeTensor:
    # Opset 5+ passes the target shape as an input, opset 1 as an attribute.
    name = node.input(1)
    if name is not None:
        ctx.ensure_tensor(name)
        return ShapeTensor.from_tensor(ctx, name)
    if "shape" in node.attrs:
        return ShapeTensor([int(v) for v in node.attrs["shape"]])
    raise InvalidInputError(
        f"Reshape requires a target shape. op={node.name}",
        reason_code="missing_reshape_shape",
    )


def _resolve_zero_placeholders(
    ctx: Any,
    target: ShapeTensor,
    dims: ShapeTensor,
    rank: int,
) -> ShapeTensor:
    """Replace ONNX ``0`` entries of a Reshape target by the input dimension at the same index."""
    n = target.size
    # 1 where the entry is 0, otherwise 0. Entries are never below -1.
    is_zero = add(
        ctx,
        sub(ctx, [1], min_(ctx, [1], max_(ctx, [0], target))),
        min_(ctx, [0], target),
    )
    if n > rank:
        dims = concat(ctx, dims, [0] * (n - rank))
    copied = gather(ctx, dims, iota(n))
    return add(ctx, target, mul(ctx, is_zero, copied))


def _infer_reshape_dims(
    node: Any,
    values: List[int],
    data_shape: Optional[List[int]],
    allowzero: bool,
) -> List[int]:
    dims = []
    for i, v in enumerate(values):
        if v == 0 and not allowzero:
            dims.append(int(data_shape[i]) if data_shape is not None else -1)
        else:
            dims.append(int(v))
    if data_shape is None or any(d < 0 for d in data_shape):
        return dims
    total = volume(data_shape)
    known = volume(d for d in dims if d != -1)
    if -1 in dims:
        if known == 0:
            return dims
        if total % known != 0:
            raise InvalidInputError(
                f"Reshape of {data_shape} into {values} does not preserve the element count. op={node.name}",
                reason_code="reshape_volume_mismatch",
            )
        dims[dims.index(-1)] = total // known
    elif known != total:
        raise InvalidInputError(
            f"Reshape of {data_shape} into {values} does not preserve the element count. op={node.name}",
            reason_code="reshape_volume_mismatch",
        )
    return dims


def build_reshape_op(node: Any, ctx: Any) -> None:
    data_name = node.inputs[0]
    output_name = node.outputs[0]
    ctx.ensure_tensor(data_name)
    data_shape = ctx.get_tensor_shape(data_name)
    allowzero = bool(int(node.attrs.get("allowzero", 0)))

    target = _reshape_target(node, ctx)
    if not target.size_known:
        raise UnsupportedError(
            f"Reshape target shape must have a known length. op={node.name}",
            reason_code="dynamic_reshape_rank",
        )

    if target.all_values_known:
        values = target.values
        if any(v < -1 for v in values) or values.count(-1) > 1:
            raise InvalidInputError(
                f"Reshape target {values} is invalid. op={node.name}",
                reason_code="invalid_reshape_shape",
            )
        if allowzero and 0 in values and -1 in values:
            raise InvalidInputError(
                f"Reshape target {values} mixes 0 and -1 with allowzero=1. op={node.name}",
                reason_code="invalid_reshape_shape",
            )
        if not allowzero and data_shape is not None:
            if any(v == 0 and i >= len(data_shape) for i, v in enumerate(values)):
                raise InvalidInputError(
                    f"Reshape target {values} copies a dimension beyond input rank "
                    f"{len(data_shape)}. op={node.name}",
                    reason_code="invalid_reshape_shape",
                )
        output_shape = _infer_reshape_dims(node, values, data_shape, allowzero)
    else:
        output_shape = [-1] * target.size

    weights = ctx.get_constant_weights(data_name)
    if weights is not None and weights and all(d >= 0 for d in output_shape):
        # Constants keep their bytes; only the shape changes.
        reshaped = WeightBuffer(
            weights.dtype,
            weights.values,
            output_shape,
            name=output_name,
            borrowed=weights.borrowed,
        )
        ctx.emit_constant(reshaped, name=output_name)
        return

    ctx.ensure_tensor(
        output_name,
        dtype=ctx.get_tensor_dtype(data_name),
        shape=output_shape,
    )
    options = {}
    if all(d >= 0 for d in output_shape):
        shape_name = ctx.add_const_tensor(
            f"{output_name}_reshape_shape",
            np.asarray(output_shape, dtype=np.int32),
        )
        options["newShape"] = list(output_shape)
    else:
        if not allowzero and (not target.all_values_known or 0 in target.values):
            if data_shape is None:
                raise UnsupportedError(
                    f"Reshape with 0 placeholders needs a known input rank. op={node.name}",
                    reason_code="unknown_rank",
                )
            target = _resolve_zero_placeholders(
                ctx,
                target,
                shape_of(ctx, data_name),
                len(data_shape),
            )
        shape_name = target.to_tensor(ctx)
    ctx.add_operator(
        OperatorIR(
            op_type="RESHAPE",
            inputs=[data_name, shape_name],
            outputs=[output_name],
            options=options,
        )
    )


def _pad_operand(node: Any, ctx: Any) -> ShapeTensor:
    # Opset 11+ passes pads as an input, opset 2 as an attribute.
    name = node.input(1)
    if name is not None:
        ctx.ensure_tensor(name)
        return ShapeTensor.from_tensor(ctx, name)
    if "pads" in node.attrs:
        return ShapeTensor([int(v) for v in node.attrs["pads"]])
    raise InvalidInputError(
        f"Pad requires pads. op={node.name}",
        reason_code="missing_pads",
    )


def _paddings_tensor(
    ctx: Any,
    output_name: str,
    begins: ShapeTensor,
    ends: ShapeTensor,
    rank: int,
) -> str:
    """Target paddings are a [rank, 2] INT32 tensor of (begin, end) rows."""
    order: List[int] = []
    for axis in range(rank):
        order.extend([axis, rank + axis])
    flat = gather(ctx, concat(ctx, begins, ends), order)
    if flat.all_values_known:
        return ctx.add_const_tensor(
            f"{output_name}_paddings",
            np.asarray(flat.values, dtype=np.int32).reshape(rank, 2),
        )
    paddings_name = ctx.add_intermediate_tensor(
        f"{output_name}_paddings",
        SHAPE_TENSOR_DTYPE,
        [rank, 2],
    )
    shape_name = ctx.add_const_tensor(
        f"{output_name}_paddings_shape",
        np.asarray([rank, 2], dtype=np.int32),
    )
    ctx.add_operator(
        OperatorIR(
            op_type="RESHAPE",
            inputs=[flat.to_tensor(ctx), shape_name],
            outputs=[paddings_name],
            options={"newShape": [rank, 2]},
        )
    )
    return paddings_name


def build_pad_op(node: Any, ctx: Any) -> None:
    data_name = node.inputs[0]
    output_name = node.outputs[0]
    ctx.ensure_tensor(data_name)
    data_shape = ctx.get_tensor_shape(data_name)
    if data_shape is None:
        raise UnsupportedError(
            f"Pad input '{data_name}' has unknown rank. op={node.name}",
            reason_code="unknown_rank",
        )
    rank = len(data_shape)

    mode = str(node.attrs.get("mode", "constant"))
    if mode not in ("constant", "reflect"):
        raise UnsupportedError(
            f"Pad mode '{mode}' is not supported. op={node.name}",
            reason_code="unsupported_pad_mode",
        )

    pads = _pad_operand(node, ctx)
    axes_name = node.input(3)
    if axes_name is None:
        axes_values = list(range(rank))
    else:
        ctx.ensure_tensor(axes_name)
        axes = ShapeTensor.from_tensor(ctx, axes_name)
        if not axes.all_values_known:
            raise UnsupportedError(
                f"Pad axes must be constant. op={node.name}",
                reason_code="dynamic_pad_axes",
            )
        axes_values = [convert_axis(axis=a, tensor_rank=rank) for a in axes.values]
        if len(set(axes_values)) != len(axes_values):
            raise InvalidInputError(
                f"Pad axes {axes_values} must not repeat. op={node.name}",
                reason_code="duplicate_pad_axes",
            )
    n = len(axes_values)
    if pads.size_known and pads.size != 2 * n:
        raise InvalidInputError(
            f"Pad expects {2 * n} pad values, got {pads.size}. op={node.name}",
            reason_code="pad_length_mismatch",
        )
    if pads.all_values_known and any(p < 0 for p in pads.values):
        raise UnsupportedError(
            f"Negative pads are not supported. op={node.name} pads={pads.values}",
            reason_code="negative_pads",
        )

    # pads is [x1_begin, x2_begin, ..., x1_end, x2_end, ...] over the named axes.
    subscripts = axes_to_interlace_subscripts(axes_values, rank)
    zeros = ShapeTensor([0] * rank)
    begins = interlace(ctx, zeros, gather(ctx, pads, iota(n)), subscripts)
    ends = interlace(ctx, zeros, gather(ctx, pads, list(range(n, 2 * n))), subscripts)

    if begins.all_values_known and ends.all_values_known:
        output_shape = [
            int(d) + b + e if int(d) >= 0 else -1
            for d, b, e in zip(data_shape, begins.values, ends.values)
        ]
    else:
        output_shape = [
            -1 if axis in axes_values else int(data_shape[axis])
            for axis in range(rank)
        ]
    dtype = ctx.get_tensor_dtype(data_name)
    ctx.ensure_tensor(output_name, dtype=dtype, shape=output_shape)
    paddings_name = _paddings_tensor(ctx, output_name, begins, ends, rank)

    if mode == "reflect":
        ctx.add_operator(
            OperatorIR(
                op_type="MIRROR_PAD",
                inputs=[data_name, paddings_name],
                outputs=[output_name],
                options={"mode": "REFLECT"},
            )
        )
        return

    value_name = node.input(2)
    if value_name is None and float(node.attrs.get("value", 0.0)) != 0.0:
        onnx_dtype = onnx_dtype_from_target(dtype)
        np_dtype = numpy_dtype_from_onnx(onnx_dtype) if onnx_dtype is not None else None
        if np_dtype is None:
            raise UnsupportedError(
                f"Pad value cannot be materialized for dtype {dtype}. op={node.name}",
                reason_code="unsupported_dtype",
            )
        value_name = ctx.add_const_tensor(
            f"{output_name}_pad_value",
            np.asarray(node.attrs["value"], dtype=np_dtype),
        )
    if value_name is None:
        ctx.add_operator(
            OperatorIR(
                op_type="PAD",
                inputs=[data_name, paddings_name],
                outputs=[output_name],
            )
        )
        return
    ctx.ensure_tensor(value_name)
    ctx.add_operator(
        OperatorIR(
            op_type="PADV2",
            inputs=[data_name, paddings_name, value_name],
            outputs=[output_name],
        )
    )
