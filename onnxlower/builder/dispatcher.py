from __future__ import annotations

from typing import Any

from onnxlower.builder.op_builders import (
    build_binary_op,
    build_constant_op,
    build_identity_op,
    build_pad_op,
    build_reshape_op,
    build_slice_op,
    build_transpose_op,
    build_variadic_op,
)
from onnxlower.utils.errors import UnsupportedError

_BINARY_OPS = {
    "Add": "ADD",
    "Sub": "SUB",
    "Mul": "MUL",
    "Div": "DIV",
    "Pow": "POW",
}

_VARIADIC_OPS = {
    "Sum": "ADD",
    "Max": "MAXIMUM",
    "Min": "MINIMUM",
}


def get_supported_onnx_ops():
    return sorted(
        list(_BINARY_OPS.keys())
        + list(_VARIADIC_OPS.keys())
        + ["Constant", "Identity", "Pad", "Reshape", "Slice", "Transpose"]
    )


def dispatch_node(node: Any, ctx: Any) -> None:
    op = node.op
    if op in _BINARY_OPS:
        build_binary_op(node, ctx, _BINARY_OPS[op])
        return
    if op in _VARIADIC_OPS:
        build_variadic_op(node, ctx, _VARIADIC_OPS[op])
        return
    if op == "Constant":
        build_constant_op(node, ctx)
        return
    if op == "Identity":
        build_identity_op(node, ctx)
        return
    if op == "Reshape":
        build_reshape_op(node, ctx)
        return
    if op == "Pad":
        build_pad_op(node, ctx)
        return
    if op == "Slice":
        build_slice_op(node, ctx)
        return
    if op == "Transpose":
        build_transpose_op(node, ctx)
        return
    raise UnsupportedError(
        f"ONNX op is not supported by onnxlower: {op} ({node.name})",
        reason_code="unsupported_onnx_op",
    )
