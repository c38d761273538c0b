from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import onnx

from onnxlower.utils.enums import convert_dtype


def _parse_dim(dim: onnx.TensorShapeProto.Dimension) -> int:
    # Symbolic dim_param names are unknown at import time.
    if dim.HasField("dim_value") and int(dim.dim_value) >= 0:
        return int(dim.dim_value)
    return -1


def _parse_attribute(a: onnx.AttributeProto) -> Any:
    if a.type == onnx.AttributeProto.INT:
        return int(a.i)
    if a.type == onnx.AttributeProto.FLOAT:
        return float(a.f)
    if a.type == onnx.AttributeProto.INTS:
        return [int(v) for v in a.ints]
    if a.type == onnx.AttributeProto.FLOATS:
        return [float(v) for v in a.floats]
    if a.type == onnx.AttributeProto.STRING:
        return a.s.decode("utf-8")
    if a.type == onnx.AttributeProto.STRINGS:
        return [s.decode("utf-8") for s in a.strings]
    if a.type == onnx.AttributeProto.TENSOR:
        return a.t
    return None


class GraphNode:
    """Operator-type tag, parsed attributes and ordered input/output names of one node."""

    def __init__(self, n: onnx.NodeProto):
        self.name = n.name if n.name else n.op_type
        self.op = n.op_type
        self.domain = n.domain
        self.attrs: Dict[str, Any] = {}
        for a in n.attribute:
            value = _parse_attribute(a)
            if value is not None:
                self.attrs[a.name] = value
        # Optional inputs keep their position as "".
        self.inputs: List[str] = [i for i in n.input]
        self.outputs: List[str] = [o for o in n.output if o != ""]

    def input(self, index: int) -> Optional[str]:
        if index < len(self.inputs) and self.inputs[index] != "":
            return self.inputs[index]
        return None

    def __repr__(self) -> str:
        return f"GraphNode(name={self.name!r}, op={self.op!r}, inputs={self.inputs}, outputs={self.outputs})"


def extract_tensor_info(
    onnx_graph: onnx.ModelProto,
) -> Tuple[Dict[str, Optional[List[int]]], Dict[str, str]]:
    """Shape (None for unknown rank) and target dtype for every value_info of the graph."""
    shape_map: Dict[str, Optional[List[int]]] = {}
    dtype_map: Dict[str, str] = {}

    def _fill_value_info(value_info):
        if not value_info.type.HasField("tensor_type"):
            return
        name = value_info.name
        tensor_type = value_info.type.tensor_type
        if tensor_type.HasField("shape"):
            shape_map[name] = [_parse_dim(d) for d in tensor_type.shape.dim]
        else:
            shape_map[name] = None
        dtype = convert_dtype(tensor_type.elem_type)
        if dtype is not None:
            dtype_map[name] = dtype

    for vi in onnx_graph.graph.input:
        _fill_value_info(vi)
    for vi in onnx_graph.graph.value_info:
        _fill_value_info(vi)
    for vi in onnx_graph.graph.output:
        _fill_value_info(vi)

    return shape_map, dtype_map
