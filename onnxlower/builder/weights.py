from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import numpy as np
import onnx
from onnx import numpy_helper

from onnxlower.builder.shape import Shape
from onnxlower.utils.enums import convert_dtype, get_dtype_name, get_dtype_size
from onnxlower.utils.errors import (
    InternalInconsistencyError,
    InvalidInputError,
    UnsupportedError,
)


@dataclass
class TargetWeights:
    """Opaque weights handed to the target builder."""
    dtype: str
    values: Optional[np.ndarray]
    count: int


class WeightBuffer:
    """Untyped byte region tagged with an ONNX dtype and a shape.

    ``values`` is a flat uint8 array. A borrowed buffer is a read-only view
    onto bytes owned by the imported graph; every other buffer comes from
    the importer arena.
    """

    def __init__(
        self,
        dtype: int,
        values: Optional[np.ndarray],
        shape: Shape,
        name: Optional[str] = None,
        borrowed: bool = False,
    ):
        self.dtype = int(dtype)
        self.values = values
        self.shape = shape if isinstance(shape, Shape) else Shape(tuple(shape))
        self.name = name
        self.borrowed = bool(borrowed)

    @classmethod
    def empty(cls, dtype: int) -> "WeightBuffer":
        return cls(dtype, None, Shape())

    def count(self) -> int:
        if self.values is None and self.shape.rank <= 0:
            return 0
        return self.shape.volume()

    def size_bytes(self) -> int:
        return self.count() * get_dtype_size(self.dtype)

    def __bool__(self) -> bool:
        return self.values is not None

    def get_name(self) -> Optional[str]:
        return self.name

    def set_name(self, name: Optional[str]) -> None:
        self.name = name

    def view(self, np_dtype: Any) -> np.ndarray:
        """Flat typed view of the bytes. The element width must match the stored dtype."""
        np_dtype = np.dtype(np_dtype)
        width = get_dtype_size(self.dtype)
        if np_dtype.itemsize != width:
            raise InvalidInputError(
                f"Cannot view {get_dtype_name(self.dtype)} weights "
                f"'{self.name}' as {np_dtype}: element width {width} != {np_dtype.itemsize}",
                reason_code="dtype_width_mismatch",
            )
        if self.values is None:
            return np.zeros((0,), dtype=np_dtype)
        return self.values.view(np_dtype)

    def to_target_weights(self) -> TargetWeights:
        target_dtype = convert_dtype(self.dtype)
        if target_dtype is None:
            raise InternalInconsistencyError(
                f"Weights '{self.name}' carry dtype {get_dtype_name(self.dtype)} "
                "which has no target equivalent",
                reason_code="unmapped_dtype",
            )
        return TargetWeights(
            dtype=target_dtype,
            values=self.values,
            count=self.count(),
        )

    def __repr__(self) -> str:
        return (
            f"WeightBuffer(name={self.name!r}, dtype={get_dtype_name(self.dtype)}, "
            f"shape={self.shape}, borrowed={self.borrowed})"
        )


def convert_onnx_weights(ctx: Any, onnx_tensor: onnx.TensorProto) -> WeightBuffer:
    """Lift an ONNX tensor constant into a WeightBuffer.

    ``raw_data`` payloads are borrowed; typed-field payloads are copied into
    the arena. Payload sizes are validated before anything else touches them.
    """
    name = onnx_tensor.name
    dtype = int(onnx_tensor.data_type)
    if convert_dtype(dtype) is None:
        raise UnsupportedError(
            f"Tensor '{name}' has unsupported dtype {get_dtype_name(dtype)}",
            reason_code="unsupported_dtype",
        )
    if onnx_tensor.data_location == onnx.TensorProto.EXTERNAL:
        raise UnsupportedError(
            f"Tensor '{name}' stores its payload in external data, "
            "which must be loaded before lowering",
            reason_code="external_data",
        )
    shape = Shape.from_onnx_dims(list(onnx_tensor.dims))
    expected_bytes = shape.volume() * get_dtype_size(dtype)

    if onnx_tensor.raw_data:
        raw = onnx_tensor.raw_data
        if len(raw) != expected_bytes:
            raise InvalidInputError(
                f"Tensor '{name}' payload is malformed: got {len(raw)} bytes, "
                f"expected {expected_bytes} for shape {shape} and dtype {get_dtype_name(dtype)}",
                reason_code="malformed_tensor_payload",
            )
        values = np.frombuffer(raw, dtype=np.uint8)
        return WeightBuffer(dtype, values, shape, name=name, borrowed=True)

    try:
        arr = numpy_helper.to_array(onnx_tensor)
    except ValueError as ex:
        raise InvalidInputError(
            f"Tensor '{name}' payload is malformed: {ex}",
            reason_code="malformed_tensor_payload",
        ) from ex
    if int(arr.size) != shape.volume():
        raise InvalidInputError(
            f"Tensor '{name}' payload is malformed: got {arr.size} elements, "
            f"expected {shape.volume()} for shape {shape}",
            reason_code="malformed_tensor_payload",
        )
    weights = ctx.create_temp_weights(dtype, shape)
    weights.values[:] = np.ascontiguousarray(arr).reshape(-1).view(np.uint8)
    weights.set_name(name)
    return weights
