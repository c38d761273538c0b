from __future__ import annotations

from typing import Any

from onnxlower.builder.broadcast import broadcast_tensors, combine_broadcast_shapes
from onnxlower.builder.ir import OperatorIR
from onnxlower.builder.op_builders.shape import build_identity_op
from onnxlower.builder.shape import Shape
from onnxlower.utils.errors import InvalidInputError, UnsupportedError


def _known_rank_shape(ctx: Any, name: str, node: Any) -> Shape:
    shape = ctx.get_tensor_shape(name)
    if shape is None:
        raise UnsupportedError(
            f"Elementwise input '{name}' has unknown rank. op={node.name}",
            reason_code="unknown_rank",
        )
    return Shape.from_onnx_dims(shape)


def _emit_binary(
    ctx: Any,
    node: Any,
    op_type: str,
    lhs: str,
    rhs: str,
    output_name: str,
) -> None:
    out_shape = combine_broadcast_shapes(
        _known_rank_shape(ctx, lhs, node),
        _known_rank_shape(ctx, rhs, node),
    )
    lhs, rhs = broadcast_tensors(ctx, lhs, rhs)
    ctx.ensure_tensor(
        output_name,
        dtype=ctx.get_tensor_dtype(lhs),
        shape=out_shape.to_list(),
    )
    ctx.add_operator(
        OperatorIR(
            op_type=op_type,
            inputs=[lhs, rhs],
            outputs=[output_name],
            options={"fusedActivationFunction": "NONE"},
        )
    )


def build_binary_op(node: Any, ctx: Any, op_type: str) -> None:
    input_names = [name for name in node.inputs if name != ""]
    output_name = node.outputs[0]
    if len(input_names) != 2:
        raise InvalidInputError(
            f"{node.op} expects 2 inputs, got {len(input_names)}. op={node.name}",
            reason_code="invalid_input_count",
        )
    for name in input_names:
        ctx.ensure_tensor(name)
    _emit_binary(ctx, node, op_type, input_names[0], input_names[1], output_name)


def build_variadic_op(node: Any, ctx: Any, op_type: str) -> None:
    """Sum / Max / Min over any number of inputs, folded left to right."""
    input_names = [name for name in node.inputs if name != ""]
    output_name = node.outputs[0]
    if len(input_names) == 0:
        raise InvalidInputError(
            f"{node.op} requires at least one input. op={node.name}",
            reason_code="invalid_input_count",
        )
    for name in input_names:
        ctx.ensure_tensor(name)
    if len(input_names) == 1:
        build_identity_op(node, ctx)
        return

    acc = input_names[0]
    for idx, name in enumerate(input_names[1:], start=1):
        if idx == len(input_names) - 1:
            target = output_name
        else:
            target = ctx.unique_tensor_name(f"{output_name}_partial")
        _emit_binary(ctx, node, op_type, acc, name, target)
        acc = target
