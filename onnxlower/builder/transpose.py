from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, List, Sequence, Tuple

import numpy as np
from onnx import TensorProto

from onnxlower.builder.shape import Shape
from onnxlower.builder.weights import WeightBuffer
from onnxlower.utils.enums import get_dtype_name
from onnxlower.utils.errors import InternalInconsistencyError, UnsupportedError

# Weights transposes are implemented up to this rank. Lower ranks are padded
# with leading size-1 axes.
MAX_TRANSPOSE_RANK = 4

# Elements are moved as opaque words, never converted.
_TRANSPOSE_WORD_DTYPES = {
    TensorProto.FLOAT: np.uint32,
    TensorProto.FLOAT16: np.uint16,
}


@dataclass(frozen=True)
class Permutation:
    """Output axis ``i`` takes its data from input axis ``order[i]``."""

    order: Tuple[int, ...]

    def __post_init__(self) -> None:
        order = tuple(int(o) for o in self.order)
        if sorted(order) != list(range(len(order))):
            raise InternalInconsistencyError(
                f"Permutation {order} is not a bijection on [0, {len(order)})",
                reason_code="invalid_permutation",
            )
        object.__setattr__(self, "order", order)

    @classmethod
    def identity(cls, rank: int) -> "Permutation":
        return cls(tuple(range(int(rank))))

    @property
    def rank(self) -> int:
        return len(self.order)

    def inverse(self) -> "Permutation":
        inv = [0] * len(self.order)
        for idx, axis in enumerate(self.order):
            inv[axis] = idx
        return Permutation(tuple(inv))

    def apply(self, shape: Iterable[int]) -> Shape:
        dims = list(shape)
        if len(dims) != self.rank:
            raise InternalInconsistencyError(
                f"Permutation {self.order} cannot be applied to rank-{len(dims)} shape {tuple(dims)}",
                reason_code="permutation_rank_mismatch",
            )
        return Shape(tuple(dims[axis] for axis in self.order))

    def is_identity(self) -> bool:
        return self.order == tuple(range(len(self.order)))

    def to_list(self) -> List[int]:
        return list(self.order)

    def __str__(self) -> str:
        return "(" + ", ".join(str(o) for o in self.order) + ")"


def _as_permutation(perm: Any) -> Permutation:
    if isinstance(perm, Permutation):
        return perm
    return Permutation(tuple(perm))


def row_major_strides(shape: Sequence[int]) -> List[int]:
    strides = [1] * len(shape)
    for i in range(len(shape) - 2, -1, -1):
        strides[i] = int(shape[i + 1]) * strides[i + 1]
    return strides


def _pad_to_rank(
    shape: Sequence[int],
    order: Sequence[int],
    rank: int,
) -> Tuple[List[int], List[int]]:
    pad = rank - len(shape)
    padded_shape = [1] * pad + [int(d) for d in shape]
    padded_order = list(range(pad)) + [int(o) + pad for o in order]
    return padded_shape, padded_order


def strided_permute_copy(
    src: np.ndarray,
    dst: np.ndarray,
    in_shape: Sequence[int],
    order: Sequence[int],
) -> None:
    """Scatter every element of ``src`` to its permuted position in ``dst``.

    Both arrays are flat and laid out row-major. For each input coordinate
    the source offset uses the input strides and the destination offset uses
    the output strides applied to the permuted coordinate.
    """
    rank = len(in_shape)
    out_shape = [int(in_shape[axis]) for axis in order]
    src_strides = row_major_strides(in_shape)
    dst_strides = row_major_strides(out_shape)

    coords = np.indices([int(d) for d in in_shape], dtype=np.int64).reshape(rank, -1)
    src_index = np.zeros(coords.shape[1], dtype=np.int64)
    dst_index = np.zeros(coords.shape[1], dtype=np.int64)
    for i in range(rank):
        src_index += coords[i] * src_strides[i]
        dst_index += coords[order[i]] * dst_strides[i]
    dst[dst_index] = src[src_index]


def transpose_weights(ctx: Any, weights: WeightBuffer, perm: Any) -> WeightBuffer:
    """Return a new buffer holding ``weights`` physically permuted by ``perm``.

    Raises ``UnsupportedError`` for ranks above 4 and for dtypes other than
    FLOAT / FLOAT16; nothing is allocated in that case. The source buffer
    is never modified.
    """
    perm = _as_permutation(perm)
    shape = weights.shape
    if perm.rank != shape.rank:
        raise InternalInconsistencyError(
            f"Permutation {perm} does not match the rank of weights "
            f"'{weights.get_name()}' with shape {shape}",
            reason_code="permutation_rank_mismatch",
        )
    if shape.rank > MAX_TRANSPOSE_RANK:
        raise UnsupportedError(
            f"Weights transpose is only implemented up to rank {MAX_TRANSPOSE_RANK}. "
            f"weights='{weights.get_name()}' shape={shape}",
            reason_code="transpose_rank_unsupported",
        )
    word_dtype = _TRANSPOSE_WORD_DTYPES.get(weights.dtype, None)
    if word_dtype is None:
        raise UnsupportedError(
            f"Weights transpose is not implemented for dtype {get_dtype_name(weights.dtype)}. "
            f"weights='{weights.get_name()}'",
            reason_code="transpose_dtype_unsupported",
        )

    if not weights:
        # Nothing to move; keep the dtype and name of the source.
        return WeightBuffer(weights.dtype, None, perm.apply(shape), name=weights.get_name())

    new_shape = perm.apply(shape)
    result = ctx.create_temp_weights(weights.dtype, new_shape)
    padded_shape, padded_order = _pad_to_rank(shape.dims, perm.order, MAX_TRANSPOSE_RANK)
    strided_permute_copy(
        weights.view(word_dtype),
        result.view(word_dtype),
        padded_shape,
        padded_order,
    )

    ctx.log(
        "warning",
        f"Weights {weights.get_name()} has been transposed with permutation of {perm}! "
        "If you plan on overwriting the weights with the Refitter API, "
        "the new weights must be pre-transposed.",
    )
    ctx.transposed_weights.append((weights.get_name(), perm.to_list()))
    result.set_name(weights.get_name())
    return result


def is_transpose_required(shape: Iterable[int], perm: Any) -> bool:
    """False when the permutation only moves size-1 axes, so a reshape suffices."""
    perm = _as_permutation(perm)
    dims = list(shape)
    prev = -1
    for axis in perm.order:
        if int(dims[axis]) == 1:
            continue
        if axis < prev:
            return True
        prev = axis
    return False
