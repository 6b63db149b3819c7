"""The verdict type every Leash check returns."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Verdict:
    """Result of a check: allowed, or blocked with a reason naming the rule."""

    blocked: bool
    reason: str | None = None

    def __post_init__(self) -> None:
        if not self.blocked and self.reason is not None:
            raise ValueError("allowed verdicts carry no reason")

    def __repr__(self) -> str:
        if self.blocked:
            return f"Verdict(blocked, {self.reason!r})"
        return "Verdict(allowed)"


ALLOWED = Verdict(False)


def block(reason: str) -> Verdict:
    return Verdict(True, reason)
