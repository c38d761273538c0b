import numpy as np
import pytest
from onnx import TensorProto, helper

from onnxlower.builder.shape import MAX_RANK, Shape, make_dims, volume
from onnxlower.utils.common_functions import convert_axis, div_ceil, is_dynamic
from onnxlower.utils.enums import (
    convert_dtype,
    get_dtype_name,
    get_dtype_size,
    numpy_dtype_from_onnx,
    onnx_dtype_from_target,
    target_dtype_from_numpy,
)
from onnxlower.utils.errors import ErrorKind, InvalidInputError, UnsupportedError


def test_shape_rank_and_volume() -> None:
    shape = Shape.of(2, 3, 4)
    assert shape.rank == 3
    assert shape.volume() == 24
    assert list(shape) == [2, 3, 4]
    assert str(shape) == "(2, 3, 4)"


def test_scalar_shape_has_volume_one() -> None:
    assert Shape().rank == 0
    assert Shape().volume() == 1
    assert volume([]) == 1


def test_zero_sized_shape_has_volume_zero() -> None:
    assert Shape.of(0).volume() == 0
    assert Shape.of(3, 0, 2).volume() == 0


def test_shape_rejects_rank_above_max() -> None:
    assert Shape(tuple([1] * MAX_RANK)).rank == MAX_RANK
    with pytest.raises(UnsupportedError) as exc_info:
        Shape(tuple([1] * (MAX_RANK + 1)))
    assert exc_info.value.kind == ErrorKind.UNSUPPORTED
    assert exc_info.value.reason_code == "rank_exceeds_max"


def test_shape_rejects_dims_below_unknown() -> None:
    assert Shape.of(-1, 0, 3).to_list() == [-1, 0, 3]
    with pytest.raises(InvalidInputError) as exc_info:
        Shape.of(2, -7)
    assert exc_info.value.kind == ErrorKind.INVALID_INPUT
    assert exc_info.value.reason_code == "invalid_dimension"


def test_shape_from_onnx_dims_marks_symbolic_dims_unknown() -> None:
    assert Shape.from_onnx_dims(["N", 3, None]).to_list() == [-1, 3, -1]

    value_info = helper.make_tensor_value_info("x", TensorProto.FLOAT, ["batch", 4])
    dims = value_info.type.tensor_type.shape.dim
    shape = Shape.from_onnx_dims(dims)
    assert shape.to_list() == [-1, 4]
    assert shape.is_dynamic()
    assert not Shape.of(1, 4).is_dynamic()


def test_shape_helpers() -> None:
    assert make_dims(3, 1) == Shape.of(1, 1, 1)
    assert Shape.of(3).prepend_ones(2) == Shape.of(1, 1, 3)
    assert Shape.of(5, 6)[1] == 6
    assert len(Shape.of(5, 6)) == 2


def test_dtype_registry() -> None:
    assert convert_dtype(TensorProto.FLOAT) == "FLOAT32"
    assert convert_dtype(TensorProto.FLOAT16) == "FLOAT16"
    assert convert_dtype(TensorProto.INT64) == "INT64"
    assert convert_dtype(TensorProto.BOOL) == "BOOL"
    assert convert_dtype(TensorProto.STRING) is None
    assert convert_dtype(TensorProto.BFLOAT16) is None

    assert get_dtype_size(TensorProto.FLOAT16) == 2
    assert get_dtype_size(TensorProto.FLOAT) == 4
    assert get_dtype_size(TensorProto.INT64) == 8
    assert get_dtype_size(TensorProto.BOOL) == 1
    assert get_dtype_size(TensorProto.STRING) == 0

    assert get_dtype_name(TensorProto.FLOAT) == "FLOAT"
    assert get_dtype_name(9999) == "UNKNOWN(9999)"


def test_dtype_reverse_lookups() -> None:
    assert onnx_dtype_from_target("INT32") == TensorProto.INT32
    assert onnx_dtype_from_target("COMPLEX64") is None
    assert numpy_dtype_from_onnx(TensorProto.FLOAT16) == np.dtype("float16")
    assert target_dtype_from_numpy(np.int8) == "INT8"
    assert target_dtype_from_numpy(np.dtype("float32")) == "FLOAT32"
    with pytest.raises(UnsupportedError):
        target_dtype_from_numpy(np.complex64)


def test_convert_axis() -> None:
    assert convert_axis(axis=-1, tensor_rank=3) == 2
    assert convert_axis(axis=0, tensor_rank=3) == 0
    with pytest.raises(InvalidInputError) as exc_info:
        convert_axis(axis=3, tensor_rank=3)
    assert exc_info.value.reason_code == "axis_out_of_range"
    with pytest.raises(InvalidInputError):
        convert_axis(axis=-4, tensor_rank=3)


def test_div_ceil_and_is_dynamic() -> None:
    assert div_ceil(7, 2) == 4
    assert div_ceil(8, 2) == 4
    assert div_ceil(0, 3) == 0
    assert is_dynamic([1, -1, 3])
    assert not is_dynamic(Shape.of(1, 2))
