from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class PackageRecord:
    """A unified internal data structure to represent an installed package."""

    name: str
    version: str
    path: Path
    entry_path: Optional[Path] = None

    def __post_init__(self):
        if not self.name:
            raise ValueError("PackageRecord.name must be non-empty")
        if not isinstance(self.path, Path):
            object.__setattr__(self, "path", Path(self.path))

    @property
    def key(self) -> str:
        """Identity of a tree occurrence: ``name@version:path``."""
        return f"{self.name}@{self.version}:{self.path}"

    @property
    def depth(self) -> int:
        """Path nesting depth, used to break ties between unversioned copies."""
        return len(self.path.parts)

    def with_entry(self, entry_path: Optional[Path]) -> "PackageRecord":
        return replace(self, entry_path=entry_path)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "path": str(self.path),
            "entry_path": str(self.entry_path) if self.entry_path else None,
        }
