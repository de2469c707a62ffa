"""
Result objects for core operations.

Provides a unified result structure that the CLI (or any other caller)
uses to display operation outcomes consistently.
"""

from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional

from .messages import ErrorCode


@dataclass
class OperationResult:
    """
    Unified result object for all core operations.

    Attributes:
        ok: Whether the operation completed successfully
        operation: Name of the operation (e.g., "flash", "detect")
        device: Detected chip name
        port: Serial port the operation ended up using
        region: Target flash region description (e.g., "0x00002000-0x00003000")
        bytes_len: Number of bytes processed
        hashes: Dict of hash values (sha256 of the image, etc.)
        warnings: Non-blocking issues encountered
        errors: Blocking errors that caused failure
        error_code: Stable code of the failure, if any
        cancelled: The operator cancelled; neither success nor failure
        metadata: Additional operation-specific data
        logs: Captured log lines from the operation
    """
    ok: bool
    operation: str
    device: str = ""
    port: str = ""
    region: str = ""
    bytes_len: int = 0
    hashes: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    error_code: Optional[ErrorCode] = None
    cancelled: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)
    logs: List[str] = field(default_factory=list)

    def add_warning(self, message: str) -> None:
        """Add a warning message."""
        self.warnings.append(message)

    def add_error(self, message: str, code: Optional[ErrorCode] = None) -> None:
        """Add an error message and mark result as failed."""
        self.errors.append(message)
        self.ok = False
        if code is not None and self.error_code is None:
            self.error_code = code

    def to_summary(self) -> str:
        """
        Generate a human-readable summary string.

        Suitable for CLI output or simple logging.
        """
        if self.cancelled:
            status = "CANCELLED"
        else:
            status = "SUCCESS" if self.ok else "FAILED"
        lines = [f"[{status}] {self.operation}"]

        if self.device:
            lines.append(f"  Device: {self.device}")
        if self.port:
            lines.append(f"  Port: {self.port}")
        if self.region:
            lines.append(f"  Region: {self.region}")
        if self.bytes_len:
            lines.append(f"  Bytes: {self.bytes_len:,}")

        if self.hashes:
            for name, value in self.hashes.items():
                lines.append(f"  {name}: {value[:16]}...")

        if self.warnings:
            lines.append("  Warnings:")
            for warn in self.warnings:
                lines.append(f"    - {warn}")

        if self.errors:
            lines.append("  Errors:")
            for err in self.errors:
                code = f"[{self.error_code.value}] " if self.error_code else ""
                lines.append(f"    - {code}{err}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "ok": self.ok,
            "operation": self.operation,
            "device": self.device,
            "port": self.port,
            "region": self.region,
            "bytes_len": self.bytes_len,
            "hashes": self.hashes,
            "warnings": self.warnings,
            "errors": self.errors,
            "error_code": self.error_code.value if self.error_code else None,
            "cancelled": self.cancelled,
            "metadata": {k: v for k, v in self.metadata.items() if not isinstance(v, bytes)},
            "logs": self.logs,
        }

    @classmethod
    def success(
        cls,
        operation: str,
        device: str = "",
        region: str = "",
        bytes_len: int = 0,
        **kwargs,
    ) -> "OperationResult":
        """Create a successful result."""
        return cls(
            ok=True,
            operation=operation,
            device=device,
            region=region,
            bytes_len=bytes_len,
            **kwargs,
        )

    @classmethod
    def failure(
        cls,
        operation: str,
        error: str,
        code: ErrorCode = ErrorCode.E_UNKNOWN,
        **kwargs,
    ) -> "OperationResult":
        """Create a failed result."""
        result = cls(
            ok=False,
            operation=operation,
            **kwargs,
        )
        result.add_error(error, code)
        return result

    @classmethod
    def cancellation(cls, operation: str, reason: str = "", **kwargs) -> "OperationResult":
        """Create a neutral result for an operator cancellation."""
        result = cls(
            ok=False,
            operation=operation,
            cancelled=True,
            error_code=ErrorCode.E_CANCELLED,
            **kwargs,
        )
        if reason:
            result.add_warning(reason)
        return result
