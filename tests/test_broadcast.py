import numpy as np
import pytest
from onnx import numpy_helper

from onnxlower.builder.broadcast import (
    broadcast_tensor,
    broadcast_tensors,
    combine_broadcast_shapes,
    validate_broadcast,
)
from onnxlower.builder.context import ImporterContext
from onnxlower.builder.ir import ModelIR
from onnxlower.builder.shape import Shape
from onnxlower.builder.weights import convert_onnx_weights
from onnxlower.utils.errors import InternalInconsistencyError, InvalidInputError


def _make_ctx() -> ImporterContext:
    return ImporterContext(ModelIR(name="broadcast_test"))


def test_combine_broadcast_shapes() -> None:
    assert combine_broadcast_shapes((5, 1, 3), (1, 4, 3)) == Shape.of(5, 4, 3)
    assert combine_broadcast_shapes((3,), (2, 1, 3)) == Shape.of(2, 1, 3)
    assert combine_broadcast_shapes((), (2, 3)) == Shape.of(2, 3)
    assert combine_broadcast_shapes((2, 1), (1, 3), (4, 1, 1)) == Shape.of(4, 2, 3)


def test_combine_with_unknown_dims() -> None:
    assert combine_broadcast_shapes((-1, 3), (4, 3)) == Shape.of(4, 3)
    assert combine_broadcast_shapes((-1, 3), (1, 3)) == Shape.of(-1, 3)
    assert combine_broadcast_shapes((-1, 3), (-1, 3)) == Shape.of(-1, 3)


def test_validate_broadcast_rejects_incompatible_dims() -> None:
    validate_broadcast((5, 1), (5, 3))
    validate_broadcast((-1, 2), (5, 2))
    with pytest.raises(InvalidInputError) as exc_info:
        validate_broadcast((5, 2), (5, 3))
    assert exc_info.value.reason_code == "incompatible_broadcast"
    assert "first_shape=(5, 2)" in exc_info.value.message
    assert "second_shape=(5, 3)" in exc_info.value.message
    with pytest.raises(InvalidInputError):
        combine_broadcast_shapes((5, 2), (5, 3))


def test_broadcast_tensor_static_shape() -> None:
    ctx = _make_ctx()
    ctx.ensure_tensor("x", "FLOAT32", [3])
    name = broadcast_tensor(ctx, "x", 3)
    assert name != "x"
    assert ctx.get_tensor_shape(name) == [1, 1, 3]
    op = ctx.model_ir.operators[-1]
    assert op.op_type == "RESHAPE"
    assert op.inputs[0] == "x"
    assert op.outputs == [name]
    assert op.options["newShape"] == [1, 1, 3]
    shape_const = ctx.model_ir.tensors[op.inputs[1]]
    assert shape_const.dtype == "INT32"
    assert shape_const.data.tolist() == [1, 1, 3]


def test_broadcast_tensor_same_rank_is_noop() -> None:
    ctx = _make_ctx()
    ctx.ensure_tensor("x", "FLOAT32", [2, 3])
    assert broadcast_tensor(ctx, "x", 2) == "x"
    assert ctx.model_ir.operators == []


def test_broadcast_tensor_rejects_rank_decrease() -> None:
    ctx = _make_ctx()
    ctx.ensure_tensor("x", "FLOAT32", [2, 3, 4])
    with pytest.raises(InternalInconsistencyError) as exc_info:
        broadcast_tensor(ctx, "x", 2)
    assert exc_info.value.reason_code == "broadcast_rank_decrease"


def test_broadcast_tensor_dynamic_shape_uses_shape_tensor() -> None:
    ctx = _make_ctx()
    ctx.ensure_tensor("x", "FLOAT32", [-1, 3])
    name = broadcast_tensor(ctx, "x", 3)
    assert ctx.get_tensor_shape(name) == [1, -1, 3]
    assert [op.op_type for op in ctx.model_ir.operators] == [
        "SHAPE",
        "CONCATENATION",
        "RESHAPE",
    ]
    reshape = ctx.model_ir.operators[-1]
    assert "newShape" not in reshape.options
    assert ctx.get_tensor_dtype(reshape.inputs[1]) == "INT32"


def test_broadcast_constant_is_reemitted() -> None:
    ctx = _make_ctx()
    arr = np.asarray([1.0, 2.0, 3.0], dtype=np.float32)
    ctx.emit_constant(convert_onnx_weights(ctx, numpy_helper.from_array(arr, name="b")), name="b")
    name = broadcast_tensor(ctx, "b", 3)
    assert ctx.model_ir.operators == []
    tensor = ctx.model_ir.tensors[name]
    assert tensor.shape == [1, 1, 3]
    np.testing.assert_array_equal(tensor.data, arr.reshape(1, 1, 3))


def test_broadcast_tensors_raises_to_common_rank() -> None:
    ctx = _make_ctx()
    ctx.ensure_tensor("a", "FLOAT32", [4, 2, 3])
    ctx.ensure_tensor("b", "FLOAT32", [3])
    ctx.ensure_tensor("c", "FLOAT32", [2, 1])
    a, b, c = broadcast_tensors(ctx, "a", "b", "c")
    assert a == "a"
    assert ctx.get_tensor_shape(b) == [1, 1, 3]
    assert ctx.get_tensor_shape(c) == [1, 2, 1]
