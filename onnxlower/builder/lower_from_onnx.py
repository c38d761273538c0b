from __future__ import annotations

import os
from typing import Any, Dict, List

import onnx

from onnxlower.builder.context import ImporterContext
from onnxlower.builder.dispatcher import dispatch_node, get_supported_onnx_ops
from onnxlower.builder.ir import ModelIR
from onnxlower.builder.weights import convert_onnx_weights
from onnxlower.graph import GraphNode, extract_tensor_info
from onnxlower.utils.errors import InvalidInputError, LoweringError
from onnxlower.utils.logging import LOG_LEVELS, Color, debug, error, set_log_level

_TRUE_STRINGS = {"1", "true", "yes", "on"}


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_STRINGS


def _resolve_lowering_controls(kwargs: Dict[str, Any]) -> Dict[str, Any]:
    verbosity = kwargs.get(
        "verbosity",
        os.environ.get("ONNXLOWER_VERBOSITY", "warn"),
    )
    fold_constant_transposes = kwargs.get(
        "fold_constant_transposes",
        os.environ.get("ONNXLOWER_FOLD_CONSTANT_TRANSPOSES", "1"),
    )
    run_shape_inference = kwargs.get(
        "run_shape_inference",
        os.environ.get("ONNXLOWER_RUN_SHAPE_INFERENCE", "1"),
    )
    if verbosity not in LOG_LEVELS:
        raise InvalidInputError(
            f"verbosity must be one of {sorted(LOG_LEVELS.keys())}. got={verbosity}",
            reason_code="invalid_verbosity",
        )
    return {
        "verbosity": str(verbosity),
        "fold_constant_transposes": _as_bool(fold_constant_transposes),
        "run_shape_inference": _as_bool(run_shape_inference),
    }


def _infer_shapes(onnx_graph: onnx.ModelProto) -> onnx.ModelProto:
    try:
        return onnx.shape_inference.infer_shapes(onnx_graph)
    except Exception as ex:
        # Lowering still works from the declared value_info.
        debug(f"onnx shape inference failed, using declared shapes. reason={ex}")
        return onnx_graph


def build_op_coverage_report(onnx_graph: onnx.ModelProto) -> Dict[str, Any]:
    supported = set(get_supported_onnx_ops())
    op_counts: Dict[str, int] = {}
    for node in onnx_graph.graph.node:
        op_counts[node.op_type] = int(op_counts.get(node.op_type, 0) + 1)
    unsupported = sorted(op for op in op_counts if op not in supported)
    return {
        "graph_ops": dict(sorted(op_counts.items())),
        "supported_ops": sorted(op for op in op_counts if op in supported),
        "unsupported_ops": unsupported,
        "fully_supported": len(unsupported) == 0,
    }


def build_error_report(ex: LoweringError) -> Dict[str, Any]:
    return {
        "status": "failed",
        "error": ex.to_dict(),
    }


def lower_onnx_to_ir(
    onnx_graph: onnx.ModelProto,
    output_file_name: str = "model",
    **kwargs: Any,
) -> ModelIR:
    """Lower an ONNX model into the builder IR.

    Nodes are visited in declaration order. The first failure aborts the
    pass; the weights arena is released on every exit path.
    """
    controls = _resolve_lowering_controls(kwargs)
    set_log_level(controls["verbosity"])

    if controls["run_shape_inference"]:
        onnx_graph = _infer_shapes(onnx_graph)
    shape_map, dtype_map = extract_tensor_info(onnx_graph)

    model_ir = ModelIR(name=output_file_name)
    with ImporterContext(
        model_ir=model_ir,
        shape_map=shape_map,
        dtype_map=dtype_map,
        fold_constant_transposes=controls["fold_constant_transposes"],
    ) as ctx:
        initializer_names: List[str] = []
        for ini in onnx_graph.graph.initializer:
            try:
                weights = convert_onnx_weights(ctx, ini)
            except LoweringError as ex:
                ex.attach_node(ini.name, "Initializer")
                raise
            ctx.emit_constant(weights, name=ini.name)
            initializer_names.append(ini.name)

        for graph_input in onnx_graph.graph.input:
            if graph_input.name in initializer_names:
                continue
            ctx.ensure_tensor(graph_input.name)
            model_ir.inputs.append(graph_input.name)

        for node_proto in onnx_graph.graph.node:
            node = GraphNode(node_proto)
            ctx.log("verbose", f"Lowering {node.op} node {node.name}")
            try:
                dispatch_node(node, ctx)
            except LoweringError as ex:
                ex.attach_node(node.name, node.op)
                error(
                    f"{Color.RED(ex.kind.value)} while lowering "
                    f"{node.op} node {node.name}: {ex.message}"
                )
                raise

        for graph_output in onnx_graph.graph.output:
            if graph_output.name not in model_ir.tensors:
                raise InvalidInputError(
                    f"Graph output '{graph_output.name}' is not produced by any node",
                    reason_code="dangling_graph_output",
                )
            model_ir.outputs.append(graph_output.name)

        ctx.log(
            "info",
            f"Lowered {len(onnx_graph.graph.node)} nodes into "
            f"{len(model_ir.operators)} operators and {len(model_ir.tensors)} tensors",
        )
    return model_ir
