from typing import Optional

import numpy as np
from onnx import TensorProto

from onnxlower.utils.errors import UnsupportedError

# ONNX element type -> (target dtype, byte width)
ONNX_DTYPES_TO_TARGET_DTYPES = {
    TensorProto.FLOAT16: ("FLOAT16", 2),
    TensorProto.FLOAT: ("FLOAT32", 4),
    TensorProto.DOUBLE: ("FLOAT64", 8),

    TensorProto.UINT8: ("UINT8", 1),
    TensorProto.UINT16: ("UINT16", 2),
    TensorProto.UINT32: ("UINT32", 4),
    TensorProto.UINT64: ("UINT64", 8),

    TensorProto.INT8: ("INT8", 1),
    TensorProto.INT16: ("INT16", 2),
    TensorProto.INT32: ("INT32", 4),
    TensorProto.INT64: ("INT64", 8),

    TensorProto.BOOL: ("BOOL", 1),

    # TensorProto.STRING
    # TensorProto.BFLOAT16
    # TensorProto.COMPLEX64
    # TensorProto.COMPLEX128
}

TARGET_DTYPES_TO_ONNX_DTYPES = {
    target: onnx_dtype
    for onnx_dtype, (target, _) in ONNX_DTYPES_TO_TARGET_DTYPES.items()
}

ONNX_DTYPES_TO_NUMPY_DTYPES = {
    TensorProto.FLOAT16: np.dtype('float16'),
    TensorProto.FLOAT: np.dtype('float32'),
    TensorProto.DOUBLE: np.dtype('float64'),

    TensorProto.UINT8: np.dtype('uint8'),
    TensorProto.UINT16: np.dtype('uint16'),
    TensorProto.UINT32: np.dtype('uint32'),
    TensorProto.UINT64: np.dtype('uint64'),

    TensorProto.INT8: np.dtype('int8'),
    TensorProto.INT16: np.dtype('int16'),
    TensorProto.INT32: np.dtype('int32'),
    TensorProto.INT64: np.dtype('int64'),

    TensorProto.BOOL: np.dtype('bool_'),
}

NUMPY_DTYPES_TO_TARGET_DTYPES = {
    np_dtype: ONNX_DTYPES_TO_TARGET_DTYPES[onnx_dtype][0]
    for onnx_dtype, np_dtype in ONNX_DTYPES_TO_NUMPY_DTYPES.items()
}


def convert_dtype(onnx_dtype: int) -> Optional[str]:
    """Target dtype for an ONNX element type, or None when it has no equivalent."""
    entry = ONNX_DTYPES_TO_TARGET_DTYPES.get(int(onnx_dtype), None)
    if entry is None:
        return None
    return entry[0]


def get_dtype_size(onnx_dtype: int) -> int:
    """Byte width of an ONNX element type, 0 when unknown."""
    entry = ONNX_DTYPES_TO_TARGET_DTYPES.get(int(onnx_dtype), None)
    if entry is None:
        return 0
    return entry[1]


def get_dtype_name(onnx_dtype: int) -> str:
    try:
        return TensorProto.DataType.Name(int(onnx_dtype))
    except ValueError:
        return f"UNKNOWN({onnx_dtype})"


def onnx_dtype_from_target(target_dtype: str) -> Optional[int]:
    return TARGET_DTYPES_TO_ONNX_DTYPES.get(str(target_dtype), None)


def numpy_dtype_from_onnx(onnx_dtype: int) -> Optional[np.dtype]:
    return ONNX_DTYPES_TO_NUMPY_DTYPES.get(int(onnx_dtype), None)


def target_dtype_from_numpy(np_dtype: np.dtype) -> str:
    np_dtype = np.dtype(np_dtype)
    if np_dtype not in NUMPY_DTYPES_TO_TARGET_DTYPES:
        raise UnsupportedError(
            f"Unsupported numpy dtype for onnxlower: {np_dtype}",
            reason_code="unsupported_dtype",
        )
    return NUMPY_DTYPES_TO_TARGET_DTYPES[np_dtype]
