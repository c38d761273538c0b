from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    UNSUPPORTED = "unsupported"
    INVALID_INPUT = "invalid_input"
    INTERNAL_INCONSISTENCY = "internal_inconsistency"


class LoweringError(Exception):
    """Failure raised by the lowering helpers.

    ``kind`` separates "not implementable here" from "bad model data" from
    "defect in the importer itself". Node identity is attached by the driver
    once the error reaches the per-node call site.
    """

    kind: ErrorKind = ErrorKind.INTERNAL_INCONSISTENCY

    def __init__(
        self,
        message: str,
        *,
        reason_code: str = "",
        node_name: Optional[str] = None,
        node_op: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = str(message)
        self.reason_code = str(reason_code) if reason_code else self.kind.value
        self.node_name = node_name
        self.node_op = node_op

    def attach_node(self, node_name: str, node_op: str) -> None:
        # The innermost node wins when lowering recurses.
        if self.node_name is None:
            self.node_name = str(node_name)
            self.node_op = str(node_op)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_name": self.node_name,
            "onnx_op": self.node_op,
            "kind": self.kind.value,
            "reason_code": self.reason_code,
            "message": self.message,
        }

    def __str__(self) -> str:
        if self.node_name is None:
            return self.message
        return f"{self.message} (node={self.node_name} op={self.node_op})"


class UnsupportedError(LoweringError, NotImplementedError):
    kind = ErrorKind.UNSUPPORTED


class InvalidInputError(LoweringError, ValueError):
    kind = ErrorKind.INVALID_INPUT


class InternalInconsistencyError(LoweringError, AssertionError):
    kind = ErrorKind.INTERNAL_INCONSISTENCY
