from typing import Dict, List, Optional

import numpy as np
import pytest

from onnxlower.builder.ir import ModelIR


def _run_shape_ops(
    model_ir: ModelIR,
    shapes: Optional[Dict[str, List[int]]] = None,
    values: Optional[Dict[str, List[int]]] = None,
) -> Dict[str, np.ndarray]:
    """Interpret the integer shape arithmetic of a lowered model with numpy.

    ``shapes`` binds the run-time shape seen by SHAPE ops, ``values`` binds
    integer graph inputs. Operators whose inputs are not all available are
    skipped, so float data paths are left alone.
    """
    shapes = shapes or {}
    env: Dict[str, np.ndarray] = {}
    for name, tensor in model_ir.tensors.items():
        if tensor.data is not None and tensor.dtype in ("INT32", "INT64"):
            env[name] = np.asarray(tensor.data, dtype=np.int64)
    for name, v in (values or {}).items():
        env[name] = np.asarray(v, dtype=np.int64)

    for op in model_ir.operators:
        if op.op_type == "SHAPE":
            if op.inputs[0] in shapes:
                env[op.outputs[0]] = np.asarray(shapes[op.inputs[0]], dtype=np.int64)
            continue
        if not all(name in env for name in op.inputs):
            continue
        args = [env[name] for name in op.inputs]
        if op.op_type == "CAST":
            out = args[0]
        elif op.op_type == "ADD":
            out = args[0] + args[1]
        elif op.op_type == "SUB":
            out = args[0] - args[1]
        elif op.op_type == "MUL":
            out = args[0] * args[1]
        elif op.op_type == "MINIMUM":
            out = np.minimum(args[0], args[1])
        elif op.op_type == "MAXIMUM":
            out = np.maximum(args[0], args[1])
        elif op.op_type == "FLOOR_DIV":
            out = np.floor_divide(args[0], args[1])
        elif op.op_type == "CONCATENATION":
            out = np.concatenate([a.reshape(-1) for a in args])
        elif op.op_type == "GATHER":
            out = np.take(args[0], args[1], axis=0)
        elif op.op_type == "FILL":
            out = np.full(int(args[0].reshape(-1)[0]), args[1], dtype=np.int64)
        elif op.op_type == "RESHAPE":
            out = args[0].reshape([int(d) for d in args[1]])
        else:
            continue
        env[op.outputs[0]] = out
    return env


@pytest.fixture
def evaluate_shape_ops():
    return _run_shape_ops
