"""
Result objects for workflow actions.

The CLI renders these; library callers can inspect them directly instead of
catching exceptions.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class OperationResult:
    """
    Outcome of one workflow action.

    Attributes:
        ok: Whether the operation completed successfully
        operation: Name of the operation (e.g., "flash_segments")
        chip: Chip the operation targeted
        regions: Flash regions written, one per segment ("0x1000-0x5000")
        bytes_len: Total number of data bytes written
        hashes: sha256 per region
        warnings: Non-blocking issues encountered
        errors: Blocking errors that caused failure
        metadata: Additional operation-specific data
        logs: Captured log lines from the operation
    """
    ok: bool
    operation: str
    chip: str = ""
    regions: List[str] = field(default_factory=list)
    bytes_len: int = 0
    hashes: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    logs: List[str] = field(default_factory=list)

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def add_error(self, message: str) -> None:
        """Add an error message and mark result as failed."""
        self.errors.append(message)
        self.ok = False

    def add_region(self, region: str, sha256: str, length: int) -> None:
        """Record a written region."""
        self.regions.append(region)
        self.hashes[region] = sha256
        self.bytes_len += length

    def to_summary(self) -> str:
        """
        Generate a human-readable summary string.

        Suitable for CLI output or simple logging.
        """
        status = "SUCCESS" if self.ok else "FAILED"
        lines = [f"[{status}] {self.operation}"]

        if self.chip:
            lines.append(f"  Chip: {self.chip}")
        for region in self.regions:
            digest = self.hashes.get(region, "")
            lines.append(f"  Region: {region}" + (f" sha256={digest[:16]}..." if digest else ""))
        if self.bytes_len:
            lines.append(f"  Bytes: {self.bytes_len:,}")

        if self.warnings:
            lines.append("  Warnings:")
            for warn in self.warnings:
                lines.append(f"    - {warn}")

        if self.errors:
            lines.append("  Errors:")
            for err in self.errors:
                lines.append(f"    - {err}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "ok": self.ok,
            "operation": self.operation,
            "chip": self.chip,
            "regions": self.regions,
            "bytes_len": self.bytes_len,
            "hashes": self.hashes,
            "warnings": self.warnings,
            "errors": self.errors,
            "metadata": self.metadata,
            "logs": self.logs,
        }

    @classmethod
    def success(cls, operation: str, chip: str = "", **kwargs) -> "OperationResult":
        return cls(ok=True, operation=operation, chip=chip, **kwargs)

    @classmethod
    def failure(
        cls,
        operation: str,
        error: str,
        chip: str = "",
        **kwargs,
    ) -> "OperationResult":
        """Create a failed result."""
        result = cls(ok=False, operation=operation, chip=chip, **kwargs)
        result.errors.append(error)
        return result
