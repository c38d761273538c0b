from __future__ import annotations

from typing import Any

import numpy as np
import onnx
from onnx import numpy_helper

from onnxlower.builder.weights import convert_onnx_weights
from onnxlower.utils.errors import UnsupportedError

_LIST_VALUE_ATTRS = {
    "value_int": np.int64,
    "value_ints": np.int64,
    "value_float": np.float32,
    "value_floats": np.float32,
}


def build_constant_op(node: Any, ctx: Any) -> None:
    output_name = node.outputs[0]
    value = node.attrs.get("value", None)
    if value is None:
        for attr_name, np_dtype in _LIST_VALUE_ATTRS.items():
            if attr_name in node.attrs:
                value = numpy_helper.from_array(
                    np.asarray(node.attrs[attr_name], dtype=np_dtype),
                    name=output_name,
                )
                break
    if not isinstance(value, onnx.TensorProto):
        raise UnsupportedError(
            f"Constant node without a dense tensor value is not supported. op={node.name}",
            reason_code="unsupported_constant",
        )
    weights = convert_onnx_weights(ctx, value)
    ctx.emit_constant(weights, name=output_name)
