from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np


@dataclass
class TensorIR:
    name: str
    dtype: str
    # None when even the rank is unknown. -1 marks an unknown dimension.
    shape: Optional[List[int]]
    data: Optional[np.ndarray] = None


@dataclass
class OperatorIR:
    op_type: str
    inputs: List[str]
    outputs: List[str]
    options: Dict[str, Any] = field(default_factory=dict)
    version: int = 1


@dataclass
class ModelIR:
    name: str
    description: str = "onnxlower"
    tensors: Dict[str, TensorIR] = field(default_factory=dict)
    operators: List[OperatorIR] = field(default_factory=list)
    inputs: List[str] = field(default_factory=list)
    outputs: List[str] = field(default_factory=list)
    # Constants whose layout was rewritten at import time. Refit weights for
    # these must be supplied pre-transposed.
    transposed_weights: List[Tuple[str, List[int]]] = field(default_factory=list)


def normalize_dim(dim: Any) -> int:
    if isinstance(dim, (int, np.integer)):
        if int(dim) >= 0:
            return int(dim)
    return -1


def normalize_onnx_shape(shape: Optional[List[Any]]) -> Optional[List[int]]:
    if shape is None:
        return None
    return [normalize_dim(dim) for dim in shape]
