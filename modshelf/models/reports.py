"""
Outcome and report records returned by repository operations.

Single-target operations return a ``RenameOutcome`` whose ``changed`` flag tells
a no-op apart from a real change; batch operations return a report that lists
per-item results instead of raising.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class RenameOutcome:
    """Result of an enable, disable or rename on a single item."""

    before: str
    after: str
    changed: bool


@dataclass
class NormalizeReport:
    """Tracks the result of a bulk character-name normalization."""

    changed: list[tuple[str, str]] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def is_noop(self) -> bool:
        return not self.changed and not self.skipped


@dataclass
class ActivationReport:
    """Tracks the result of activating one mod exclusively."""

    target: str
    enabled: str | None = None
    disabled: list[str] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.failed)


@dataclass
class ReconcileReport:
    """Tracks entries restored from an interrupted two-phase rename."""

    restored: list[tuple[str, str]] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
