"""Result objects returned by the mod managers instead of raising"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class InstallResult:
    """Outcome of installing or updating one mod"""
    success: bool
    file_name: Optional[str] = None
    category: Optional[str] = None
    version_number: Optional[str] = None
    paths: List[str] = field(default_factory=list)
    message: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @classmethod
    def failure(cls, error: Exception, file_name: Optional[str] = None) -> "InstallResult":
        return cls(
            success=False,
            file_name=file_name,
            error=str(error),
            error_kind=getattr(error, "kind", "error")
        )

    def to_dict(self) -> Dict:
        data = {"success": self.success}
        for key, value in (
            ("fileName", self.file_name),
            ("category", self.category),
            ("version", self.version_number),
            ("message", self.message),
            ("error", self.error),
        ):
            if value is not None:
                data[key] = value
        return data


@dataclass
class BatchResult:
    """
    Outcome of a bulk operation

    One item failing never aborts the batch: failures are collected as
    {identifier, message} and the rest is processed.
    """
    count: int = 0
    failures: List[Dict[str, str]] = field(default_factory=list)

    def add_failure(self, identifier: str, message: str):
        self.failures.append({"identifier": identifier, "message": message})

    @property
    def success(self) -> bool:
        return not self.failures

    @property
    def failed_identifiers(self) -> List[str]:
        return [f["identifier"] for f in self.failures]

    @property
    def error(self) -> Optional[str]:
        if not self.failures:
            return None
        details = "; ".join(f"{f['identifier']}: {f['message']}" for f in self.failures)
        return f"{len(self.failures)} items failed: {details}"

    def to_dict(self, count_key: str = "count") -> Dict:
        data = {
            "success": self.success,
            count_key: self.count,
            "errors": list(self.failures)
        }
        if self.failures:
            data["error"] = self.error
        return data
