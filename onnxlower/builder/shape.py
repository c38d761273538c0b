from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Iterator, List, Tuple

from onnxlower.utils.errors import InvalidInputError, UnsupportedError

MAX_RANK = 8
UNKNOWN_DIM = -1


@dataclass(frozen=True)
class Shape:
    """Fixed-capacity dimension list. ``-1`` marks a dimension unknown at import time."""

    dims: Tuple[int, ...] = ()

    def __post_init__(self) -> None:
        dims = tuple(int(d) for d in self.dims)
        if len(dims) > MAX_RANK:
            raise UnsupportedError(
                f"Tensor rank {len(dims)} exceeds the maximum supported rank {MAX_RANK}. dims={dims}",
                reason_code="rank_exceeds_max",
            )
        if any(d < UNKNOWN_DIM for d in dims):
            raise InvalidInputError(
                f"Dimensions must be non-negative or -1 for unknown. dims={dims}",
                reason_code="invalid_dimension",
            )
        object.__setattr__(self, "dims", dims)

    @classmethod
    def of(cls, *dims: int) -> "Shape":
        return cls(tuple(dims))

    @classmethod
    def from_onnx_dims(cls, dims: Iterable[Any]) -> "Shape":
        """Dims may be ints, symbolic names, None or ``TensorShapeProto.Dimension``."""
        resolved: List[int] = []
        for d in dims:
            if hasattr(d, "HasField"):
                if d.HasField("dim_value") and int(d.dim_value) >= 0:
                    resolved.append(int(d.dim_value))
                else:
                    resolved.append(UNKNOWN_DIM)
            elif isinstance(d, int) and d >= 0:
                resolved.append(int(d))
            else:
                resolved.append(UNKNOWN_DIM)
        return cls(tuple(resolved))

    @property
    def rank(self) -> int:
        return len(self.dims)

    def volume(self) -> int:
        # Scalars have a volume of 1.
        v = 1
        for d in self.dims:
            v *= d
        return v

    def is_dynamic(self) -> bool:
        return any(d < 0 for d in self.dims)

    def prepend_ones(self, count: int) -> "Shape":
        return Shape((1,) * int(count) + self.dims)

    def to_list(self) -> List[int]:
        return list(self.dims)

    def __len__(self) -> int:
        return len(self.dims)

    def __iter__(self) -> Iterator[int]:
        return iter(self.dims)

    def __getitem__(self, index: int) -> int:
        return self.dims[index]

    def __str__(self) -> str:
        return "(" + ", ".join(str(d) for d in self.dims) + ")"


def make_dims(rank: int, value: int) -> Shape:
    return Shape((int(value),) * int(rank))


def volume(shape: Iterable[int]) -> int:
    v = 1
    for d in shape:
        v *= int(d)
    return v
