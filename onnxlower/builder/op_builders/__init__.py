from onnxlower.builder.op_builders.elementwise import (
    build_binary_op,
    build_variadic_op,
)
from onnxlower.builder.op_builders.shape import (
    build_identity_op,
    build_pad_op,
    build_reshape_op,
    build_slice_op,
    build_transpose_op,
)
from onnxlower.builder.op_builders.constant import (
    build_constant_op,
)

__all__ = [
    "build_binary_op",
    "build_variadic_op",
    "build_identity_op",
    "build_pad_op",
    "build_reshape_op",
    "build_slice_op",
    "build_transpose_op",
    "build_constant_op",
]
