from onnxlower.builder.ir import ModelIR, OperatorIR, TensorIR
from onnxlower.builder.context import ImporterContext, WeightsArena
from onnxlower.builder.shape import MAX_RANK, Shape
from onnxlower.builder.weights import TargetWeights, WeightBuffer, convert_onnx_weights
from onnxlower.builder.transpose import Permutation, is_transpose_required, transpose_weights
from onnxlower.builder.broadcast import (
    broadcast_tensor,
    broadcast_tensors,
    combine_broadcast_shapes,
    validate_broadcast,
)
