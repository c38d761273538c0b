from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from onnx import helper

from onnxlower.builder.ir import ModelIR, OperatorIR, TensorIR, normalize_onnx_shape
from onnxlower.builder.shape import Shape
from onnxlower.builder.weights import WeightBuffer
from onnxlower.utils import logging as lowering_logging
from onnxlower.utils.enums import get_dtype_size, numpy_dtype_from_onnx
from onnxlower.utils.errors import InternalInconsistencyError, UnsupportedError


class WeightsArena:
    """Append-only store for synthesized weights, released in one go."""

    def __init__(self) -> None:
        self._buffers: List[np.ndarray] = []
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    @property
    def allocated_bytes(self) -> int:
        return int(sum(int(b.nbytes) for b in self._buffers))

    def __len__(self) -> int:
        return len(self._buffers)

    def allocate(self, nbytes: int) -> np.ndarray:
        if self._released:
            raise InternalInconsistencyError(
                "Weights arena was already released; allocation after import end",
                reason_code="arena_released",
            )
        buf = np.zeros((int(nbytes),), dtype=np.uint8)
        self._buffers.append(buf)
        return buf

    def release(self) -> None:
        self._buffers.clear()
        self._released = True


class ImporterContext:
    """State for one import pass: the builder IR, the weights arena and the log sink.

    Use as a context manager so the arena is released on every exit path.
    """

    def __init__(
        self,
        model_ir: ModelIR,
        shape_map: Optional[Dict[str, Optional[List[Any]]]] = None,
        dtype_map: Optional[Dict[str, str]] = None,
        fold_constant_transposes: bool = True,
    ):
        self.model_ir = model_ir
        self.shape_map = dict(shape_map) if shape_map is not None else {}
        self.dtype_map = dict(dtype_map) if dtype_map is not None else {}
        self.fold_constant_transposes = bool(fold_constant_transposes)
        self.weights: Dict[str, WeightBuffer] = {}
        self.arena = WeightsArena()
        self.messages: List[Tuple[str, str]] = []
        self._serial = 0

    def __enter__(self) -> "ImporterContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.arena.release()

    @property
    def transposed_weights(self) -> List[Tuple[str, List[int]]]:
        return self.model_ir.transposed_weights

    def _next_name(self, base: str) -> str:
        self._serial += 1
        return f"{base}_{self._serial}"

    def unique_tensor_name(self, base: str) -> str:
        name = base
        while name in self.model_ir.tensors:
            name = self._next_name(base)
        return name

    def log(self, severity: str, message: str) -> None:
        self.messages.append((str(severity), str(message)))
        lowering_logging.log(severity, message)

    def create_temp_weights(self, dtype: int, shape: Shape) -> WeightBuffer:
        shape = shape if isinstance(shape, Shape) else Shape(tuple(shape))
        width = get_dtype_size(dtype)
        if width == 0:
            raise UnsupportedError(
                f"Cannot allocate weights of unsupported dtype {dtype}",
                reason_code="unsupported_dtype",
            )
        values = self.arena.allocate(shape.volume() * width)
        return WeightBuffer(dtype, values, shape)

    def register_weights(self, name: str, weights: WeightBuffer) -> None:
        self.weights[name] = weights

    def get_constant_weights(self, name: str) -> Optional[WeightBuffer]:
        return self.weights.get(name, None)

    def get_constant_array(self, name: str) -> Optional[np.ndarray]:
        weights = self.weights.get(name, None)
        if weights is None or not weights:
            return None
        np_dtype = numpy_dtype_from_onnx(weights.dtype)
        if np_dtype is None:
            return None
        return weights.view(np_dtype).reshape(weights.shape.to_list())

    def emit_constant(self, weights: WeightBuffer, name: Optional[str] = None) -> str:
        """Add ``weights`` to the builder IR as a constant tensor and return its name.

        An explicit ``name`` is used as is; otherwise a unique name is derived
        from the weights name.
        """
        target = weights.to_target_weights()
        if name is None:
            name = self.unique_tensor_name(weights.get_name() or "constant")
        data = None
        if target.values is not None:
            np_dtype = numpy_dtype_from_onnx(weights.dtype)
            data = weights.view(np_dtype).reshape(weights.shape.to_list())
        self.model_ir.tensors[name] = TensorIR(
            name=name,
            dtype=target.dtype,
            shape=weights.shape.to_list(),
            data=data,
        )
        self.register_weights(name, weights)
        return name

    def add_const_tensor(self, base_name: str, data: np.ndarray) -> str:
        data = np.ascontiguousarray(np.asarray(data))
        onnx_dtype = int(helper.np_dtype_to_tensor_dtype(data.dtype))
        weights = self.create_temp_weights(onnx_dtype, Shape(tuple(data.shape)))
        weights.values[:] = data.reshape(-1).view(np.uint8)
        name = self.unique_tensor_name(base_name)
        weights.set_name(name)
        return self.emit_constant(weights, name=name)

    def get_tensor_shape(self, name: str) -> Optional[List[int]]:
        if name in self.model_ir.tensors:
            shape = self.model_ir.tensors[name].shape
            return list(shape) if shape is not None else None
        return normalize_onnx_shape(self.shape_map.get(name, None))

    def get_tensor_dtype(self, name: str) -> str:
        if name in self.model_ir.tensors:
            return self.model_ir.tensors[name].dtype
        return self.dtype_map.get(name, "FLOAT32")

    def ensure_tensor(
        self,
        name: str,
        dtype: Optional[str] = None,
        shape: Optional[List[int]] = None,
    ) -> str:
        if name == "":
            raise InternalInconsistencyError(
                "Tensor name must not be empty in onnxlower lowering.",
                reason_code="empty_tensor_name",
            )
        if name in self.model_ir.tensors:
            return name
        if dtype is None:
            dtype = self.dtype_map.get(name, "FLOAT32")
        if shape is None:
            shape = self.shape_map.get(name, None)
        self.model_ir.tensors[name] = TensorIR(
            name=name,
            dtype=dtype,
            shape=normalize_onnx_shape(shape),
        )
        return name

    def add_intermediate_tensor(
        self,
        base_name: str,
        dtype: str,
        shape: Optional[List[int]],
    ) -> str:
        if base_name == "":
            raise InternalInconsistencyError(
                "Tensor name must not be empty in onnxlower lowering.",
                reason_code="empty_tensor_name",
            )
        name = self.unique_tensor_name(base_name)
        self.model_ir.tensors[name] = TensorIR(
            name=name,
            dtype=dtype,
            shape=normalize_onnx_shape(shape),
        )
        return name

    def add_operator(self, op: OperatorIR) -> None:
        self.model_ir.operators.append(op)
