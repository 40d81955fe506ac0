"""Per-operation counters and flags of a gate."""

from __future__ import annotations

from dataclasses import dataclass

UNKNOWN_ROW_COUNT = -1


@dataclass(slots=True)
class SessionToken:
    attempt_count: int = 0
    row_count: int = UNKNOWN_ROW_COUNT
    tracked: bool = True
    save_allowed: bool = False
    save_original_values: bool = False
    last_statement: str | None = None

    def reset(self) -> None:
        """Reset the counters at the start of a logical operation."""

        self.attempt_count = 0
        self.row_count = UNKNOWN_ROW_COUNT

    def copy(self) -> SessionToken:
        return SessionToken(
            attempt_count=self.attempt_count,
            row_count=self.row_count,
            tracked=self.tracked,
            save_allowed=self.save_allowed,
            save_original_values=self.save_original_values,
            last_statement=self.last_statement,
        )
