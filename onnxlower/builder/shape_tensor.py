from __future__ import annotations

from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from onnxlower.builder.ir import OperatorIR
from onnxlower.utils.errors import InternalInconsistencyError, InvalidInputError

SHAPE_TENSOR_DTYPE = "INT32"
_INT32_MIN = int(np.iinfo(np.int32).min)
_INT32_MAX = int(np.iinfo(np.int32).max)


class ShapeTensor:
    """A rank-0 or rank-1 integer sequence, concrete or computed at run time.

    Concrete shape tensors carry their values. Symbolic ones name an INT32
    tensor in the builder IR; their length is known when ``size >= 0``.
    Concrete values are materialized lazily by ``to_tensor``.
    """

    def __init__(
        self,
        values: Optional[Iterable[int]] = None,
        *,
        tensor_name: Optional[str] = None,
        size: int = -1,
        rank: int = 1,
    ):
        if values is None and tensor_name is None:
            raise InternalInconsistencyError(
                "ShapeTensor needs either values or a tensor name",
                reason_code="empty_shape_tensor",
            )
        if rank not in (0, 1):
            raise InternalInconsistencyError(
                f"ShapeTensor rank must be 0 or 1, got {rank}",
                reason_code="shape_tensor_rank",
            )
        self._values: Optional[List[int]] = None
        if values is not None:
            self._values = [int(v) for v in values]
            size = len(self._values)
            if rank == 0 and size != 1:
                raise InternalInconsistencyError(
                    f"Scalar ShapeTensor must hold exactly one value, got {self._values}",
                    reason_code="shape_tensor_rank",
                )
        self.tensor_name = tensor_name
        self.size = int(size)
        self.rank = int(rank)

    @classmethod
    def from_tensor(cls, ctx: Any, name: str) -> "ShapeTensor":
        """Wrap a graph tensor. Constant tensors become concrete shape tensors."""
        arr = ctx.get_constant_array(name)
        if arr is not None:
            arr = np.asarray(arr)
            if arr.ndim > 1:
                raise InvalidInputError(
                    f"Shape tensor '{name}' must be rank 0 or 1, got shape {list(arr.shape)}",
                    reason_code="shape_tensor_rank",
                )
            return cls([int(v) for v in arr.reshape(-1).tolist()], rank=int(arr.ndim))
        shape = ctx.get_tensor_shape(name)
        if shape is not None and len(shape) > 1:
            raise InvalidInputError(
                f"Shape tensor '{name}' must be rank 0 or 1, got shape {shape}",
                reason_code="shape_tensor_rank",
            )
        rank = 1 if shape is None else len(shape)
        size = 1 if rank == 0 else (int(shape[0]) if shape is not None else -1)
        tensor_name = name
        if ctx.get_tensor_dtype(name) != SHAPE_TENSOR_DTYPE:
            tensor_name = ctx.add_intermediate_tensor(
                f"{name}_int32",
                SHAPE_TENSOR_DTYPE,
                [] if rank == 0 else [size],
            )
            ctx.add_operator(
                OperatorIR(
                    op_type="CAST",
                    inputs=[name],
                    outputs=[tensor_name],
                    options={
                        "inDataType": ctx.get_tensor_dtype(name),
                        "outDataType": SHAPE_TENSOR_DTYPE,
                    },
                )
            )
        return cls(tensor_name=tensor_name, size=size, rank=rank)

    @property
    def all_values_known(self) -> bool:
        return self._values is not None

    @property
    def size_known(self) -> bool:
        return self.size >= 0

    @property
    def values(self) -> List[int]:
        if self._values is None:
            raise InternalInconsistencyError(
                f"Values of shape tensor '{self.tensor_name}' are only known at run time",
                reason_code="shape_tensor_not_concrete",
            )
        return list(self._values)

    def is_all(self, value: int) -> bool:
        return self._values is not None and all(v == int(value) for v in self._values)

    def __getitem__(self, index: int) -> int:
        return self.values[index]

    def to_tensor(self, ctx: Any) -> str:
        if self.tensor_name is None:
            data = np.clip(
                np.asarray(self._values, dtype=np.int64),
                _INT32_MIN,
                _INT32_MAX,
            ).astype(np.int32)
            if self.rank == 0:
                data = data.reshape(())
            self.tensor_name = ctx.add_const_tensor("shape_tensor_const", data)
        return self.tensor_name

    def __repr__(self) -> str:
        if self._values is not None:
            return f"ShapeTensor({self._values}, rank={self.rank})"
        return f"ShapeTensor(tensor_name={self.tensor_name!r}, size={self.size}, rank={self.rank})"


ShapeTensorLike = Union[ShapeTensor, Sequence[int]]


def _as_shape_tensor(x: ShapeTensorLike) -> ShapeTensor:
    if isinstance(x, ShapeTensor):
        return x
    return ShapeTensor(list(x))


def shape_vector(value: int) -> ShapeTensor:
    return ShapeTensor([int(value)], rank=1)


def shape_scalar(value: int) -> ShapeTensor:
    return ShapeTensor([int(value)], rank=0)


def iota(count: int) -> ShapeTensor:
    return ShapeTensor(list(range(int(count))))


def _symbolic_output(ctx: Any, op_type: str, size: int, rank: int) -> str:
    return ctx.add_intermediate_tensor(
        f"shape_tensor_{op_type.lower()}",
        SHAPE_TENSOR_DTYPE,
        [] if rank == 0 else [size],
    )


def shape_of(ctx: Any, tensor_name: str) -> ShapeTensor:
    """Shape of a graph tensor; concrete when every dimension is known at import time."""
    shape = ctx.get_tensor_shape(tensor_name)
    if shape is not None and all(int(d) >= 0 for d in shape):
        return ShapeTensor([int(d) for d in shape])
    size = len(shape) if shape is not None else -1
    out = _symbolic_output(ctx, "SHAPE", size, 1)
    ctx.add_operator(
        OperatorIR(
            op_type="SHAPE",
            inputs=[tensor_name],
            outputs=[out],
            options={"outType": SHAPE_TENSOR_DTYPE},
        )
    )
    return ShapeTensor(tensor_name=out, size=size)


def fill(ctx: Any, value: int, count: Union[int, ShapeTensor]) -> ShapeTensor:
    """Vector holding ``value`` repeated ``count`` times."""
    if isinstance(count, ShapeTensor) and count.all_values_known:
        count = count.values[0]
    if not isinstance(count, ShapeTensor):
        return ShapeTensor([int(value)] * int(count))
    value_name = shape_scalar(value).to_tensor(ctx)
    out = _symbolic_output(ctx, "FILL", -1, 1)
    ctx.add_operator(
        OperatorIR(
            op_type="FILL",
            inputs=[count.to_tensor(ctx), value_name],
            outputs=[out],
        )
    )
    return ShapeTensor(tensor_name=out, size=-1)


def similar(ctx: Any, exemplar: ShapeTensor, value: int) -> ShapeTensor:
    """Shape tensor with the same length and rank as ``exemplar``, filled with ``value``."""
    if exemplar.size_known:
        return ShapeTensor([int(value)] * exemplar.size, rank=exemplar.rank)
    return fill(ctx, value, shape_of(ctx, exemplar.to_tensor(ctx)))


def _result_size(a: ShapeTensor, b: ShapeTensor) -> int:
    if a.size == b.size:
        return a.size
    if a.size == 1:
        return b.size
    if b.size == 1:
        return a.size
    if a.size_known and b.size_known:
        raise InternalInconsistencyError(
            f"Shape tensors of lengths {a.size} and {b.size} cannot be combined elementwise",
            reason_code="shape_tensor_length_mismatch",
        )
    return -1


def _elementwise(
    ctx: Any,
    a: ShapeTensorLike,
    b: ShapeTensorLike,
    op_type: str,
    func: Callable[[int, int], int],
) -> ShapeTensor:
    a = _as_shape_tensor(a)
    b = _as_shape_tensor(b)
    size = _result_size(a, b)
    rank = max(a.rank, b.rank)
    if a.all_values_known and b.all_values_known:
        av = a.values if a.size == size else a.values * size
        bv = b.values if b.size == size else b.values * size
        return ShapeTensor([func(x, y) for x, y in zip(av, bv)], rank=rank)
    out = _symbolic_output(ctx, op_type, size, rank)
    ctx.add_operator(
        OperatorIR(
            op_type=op_type,
            inputs=[a.to_tensor(ctx), b.to_tensor(ctx)],
            outputs=[out],
        )
    )
    return ShapeTensor(tensor_name=out, size=size, rank=rank)


def add(ctx: Any, a: ShapeTensorLike, b: ShapeTensorLike) -> ShapeTensor:
    return _elementwise(ctx, a, b, "ADD", lambda x, y: x + y)


def sub(ctx: Any, a: ShapeTensorLike, b: ShapeTensorLike) -> ShapeTensor:
    return _elementwise(ctx, a, b, "SUB", lambda x, y: x - y)


def mul(ctx: Any, a: ShapeTensorLike, b: ShapeTensorLike) -> ShapeTensor:
    return _elementwise(ctx, a, b, "MUL", lambda x, y: x * y)


def min_(ctx: Any, a: ShapeTensorLike, b: ShapeTensorLike) -> ShapeTensor:
    return _elementwise(ctx, a, b, "MINIMUM", min)


def max_(ctx: Any, a: ShapeTensorLike, b: ShapeTensorLike) -> ShapeTensor:
    return _elementwise(ctx, a, b, "MAXIMUM", max)


def _floor_div_values(x: int, y: int) -> int:
    if y == 0:
        raise InvalidInputError(
            "Shape tensor division by zero",
            reason_code="division_by_zero",
        )
    return x // y


def floor_div(ctx: Any, a: ShapeTensorLike, b: ShapeTensorLike) -> ShapeTensor:
    return _elementwise(ctx, a, b, "FLOOR_DIV", _floor_div_values)


def concat(ctx: Any, a: ShapeTensorLike, b: ShapeTensorLike) -> ShapeTensor:
    a = _as_shape_tensor(a)
    b = _as_shape_tensor(b)
    if a.all_values_known and b.all_values_known:
        return ShapeTensor(a.values + b.values)
    size = a.size + b.size if a.size_known and b.size_known else -1
    out = _symbolic_output(ctx, "CONCATENATION", size, 1)
    inputs = []
    for x in (a, b):
        name = x.to_tensor(ctx)
        if x.rank == 0:
            name = _reshape_to_vector(ctx, name)
        inputs.append(name)
    ctx.add_operator(
        OperatorIR(
            op_type="CONCATENATION",
            inputs=inputs,
            outputs=[out],
            options={"axis": 0},
        )
    )
    return ShapeTensor(tensor_name=out, size=size)


def _reshape_to_vector(ctx: Any, name: str) -> str:
    out = ctx.add_intermediate_tensor(f"{name}_vector", SHAPE_TENSOR_DTYPE, [1])
    ctx.add_operator(
        OperatorIR(
            op_type="RESHAPE",
            inputs=[name, shape_vector(1).to_tensor(ctx)],
            outputs=[out],
            options={"newShape": [1]},
        )
    )
    return out


def gather(ctx: Any, data: ShapeTensorLike, indices: ShapeTensorLike) -> ShapeTensor:
    data = _as_shape_tensor(data)
    indices = _as_shape_tensor(indices)
    if data.all_values_known and indices.all_values_known:
        values = data.values
        picked = []
        for i in indices.values:
            if i < 0 or i >= len(values):
                raise InternalInconsistencyError(
                    f"Gather index {i} is out of range for shape tensor {values}",
                    reason_code="gather_index_out_of_range",
                )
            picked.append(values[i])
        return ShapeTensor(picked, rank=indices.rank)
    out = _symbolic_output(ctx, "GATHER", indices.size, indices.rank)
    ctx.add_operator(
        OperatorIR(
            op_type="GATHER",
            inputs=[data.to_tensor(ctx), indices.to_tensor(ctx)],
            outputs=[out],
            options={"axis": 0},
        )
    )
    return ShapeTensor(tensor_name=out, size=indices.size, rank=indices.rank)


def axes_to_interlace_subscripts(axes: ShapeTensorLike, nb_dims: int) -> ShapeTensor:
    """Subscripts that splice overrides into a full-rank default vector.

    Gathering ``concat(defaults, overrides)`` with the result yields
    ``defaults`` where position ``axes[i]`` is replaced by ``overrides[i]``.
    """
    axes = _as_shape_tensor(axes)
    if not axes.all_values_known:
        raise InternalInconsistencyError(
            "Interlace axes must be known at import time",
            reason_code="shape_tensor_not_concrete",
        )
    subscripts = list(range(int(nb_dims)))
    for i, axis in enumerate(axes.values):
        if axis < 0 or axis >= nb_dims:
            raise InternalInconsistencyError(
                f"Interlace axis {axis} is out of range for rank {nb_dims}",
                reason_code="axis_out_of_range",
            )
        subscripts[axis] = int(nb_dims) + i
    return ShapeTensor(subscripts)


def interlace(
    ctx: Any,
    defaults: ShapeTensorLike,
    overrides: ShapeTensorLike,
    subscripts: ShapeTensorLike,
) -> ShapeTensor:
    return gather(ctx, concat(ctx, defaults, overrides), subscripts)


def decode_onnx_starts_and_ends(
    ctx: Any,
    input_dims: ShapeTensorLike,
    steps: ShapeTensorLike,
    starts: ShapeTensorLike,
    ends: ShapeTensorLike,
) -> Tuple[ShapeTensor, ShapeTensor]:
    """Resolve ONNX Slice starts/ends against the input dimensions.

    Negative indices count from the end of the axis. Results are clamped to
    ``[0, dim]`` for positive steps and ``[-1, dim - 1]`` for negative steps.
    """
    input_dims = _as_shape_tensor(input_dims)
    steps = _as_shape_tensor(steps)
    zeros = similar(ctx, steps, 0)
    minus_ones = similar(ctx, steps, -1)
    # -1 where the step is negative, 0 otherwise.
    step_sign = min_(ctx, zeros, max_(ctx, minus_ones, steps))
    upper = add(ctx, input_dims, step_sign)

    decoded = []
    for x in (_as_shape_tensor(starts), _as_shape_tensor(ends)):
        # -1 where x is negative, 0 otherwise.
        is_negative = min_(ctx, zeros, max_(ctx, minus_ones, x))
        x = sub(ctx, x, mul(ctx, input_dims, is_negative))
        x = max_(ctx, step_sign, min_(ctx, x, upper))
        decoded.append(x)
    return decoded[0], decoded[1]


def compute_slice_sizes(
    ctx: Any,
    starts: ShapeTensorLike,
    ends: ShapeTensorLike,
    steps: ShapeTensorLike,
    dims: ShapeTensorLike,
) -> ShapeTensor:
    """Per-axis ``max(0, ceil((end - start) / step))`` on decoded starts and ends."""
    starts = _as_shape_tensor(starts)
    ends = _as_shape_tensor(ends)
    steps = _as_shape_tensor(steps)
    dims = _as_shape_tensor(dims)
    zeros = similar(ctx, dims, 0)
    if steps.is_all(1):
        sizes = sub(ctx, ends, starts)
    else:
        # ceil(a / b) == -floor(-a / b) for either sign of b.
        sizes = sub(ctx, zeros, floor_div(ctx, sub(ctx, starts, ends), steps))
    return max_(ctx, zeros, sizes)
