from onnxlower.builder.lower_from_onnx import (
    build_error_report,
    build_op_coverage_report,
    lower_onnx_to_ir,
)

__version__ = '0.1.0'
