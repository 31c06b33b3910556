"""
Outcome of one bootloader operation.

Actions return an OperationResult instead of raising, so the CLI can keep
going, print every step and pick the exit status at the end.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List

from ch55x_flasher.protocol.errors import ProtocolError

from .firmware import firmware_digest


@dataclass
class OperationResult:
    """
    Attributes:
        operation: "reset", "detect", "erase", "write" or "verify"
        ok: False once the operation raised a ProtocolError
        chip: Chip name known at the end of the step (e.g. "CH552")
        bootloader: Variant and version (e.g. "V2 2.31")
        image_size: Firmware bytes sent, for write and verify
        image_sha256: Digest of the firmware image
        error: Error message of a failed step
        error_kind: ProtocolError subclass name of a failed step
        chip_info: Memory layout of the detected chip, for detect
        warnings: WARNING log lines raised during the step
        logs: All other captured log lines
    """
    operation: str
    ok: bool = True
    chip: str = ""
    bootloader: str = ""
    image_size: int = 0
    image_sha256: str = ""
    error: str = ""
    error_kind: str = ""
    chip_info: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    logs: List[str] = field(default_factory=list)

    @classmethod
    def from_error(cls, operation: str, error: ProtocolError) -> "OperationResult":
        return cls(operation, ok=False, error=str(error), error_kind=error.kind)

    def record_image(self, image: bytes) -> None:
        self.image_size = len(image)
        self.image_sha256 = firmware_digest(image)

    def status_line(self) -> str:
        """One line for console output, e.g. "Write OK: CH552, 4,096 bytes"."""
        status = "OK" if self.ok else "failed"
        facts = [fact for fact in (self.chip, self.bootloader) if fact]
        if self.image_size:
            facts.append(f"{self.image_size:,} bytes")
        line = f"{self.operation.capitalize()} {status}"
        return f"{line}: {', '.join(facts)}" if facts else line

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
