"""
Outcome of reconciling a TDF player list against platform accounts.

Every decoded entry lands in exactly one of two lists:
  - imported_users: resolved to an account (and, after persistence, registered)
  - skipped_users:  not registered, with a reason code

Counts are only changed through the methods below so that
imported_participants + skipped_participants == total_participants holds at
every step, including when a persistence failure moves an entry from
imported to skipped.
"""

from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field

SKIP_NO_ACCOUNT = "no_account"
SKIP_DUPLICATE = "duplicate"
SKIP_INVALID_DATA = "invalid_data"
SKIP_REASONS = (SKIP_NO_ACCOUNT, SKIP_DUPLICATE, SKIP_INVALID_DATA)

MATCH_BY_PLAYER_ID = "player_id"
MATCH_BY_EMAIL = "email"
MATCH_BY_NAME = "name"


class ImportedEntry(BaseModel):
    player_name: str
    player_id: str
    player_birthdate: Optional[date] = None
    user_id: int
    match_strategy: str  # player_id|email|name
    low_confidence: bool = False  # Name-only matches
    participant_id: Optional[int] = None  # Populated after insert


class SkippedEntry(BaseModel):
    player_name: str
    player_id: str
    player_birthdate: Optional[date] = None
    reason: str  # no_account|duplicate|invalid_data
    detail: Optional[str] = None


class ImportReport(BaseModel):
    total_participants: int = 0
    imported_participants: int = 0
    skipped_participants: int = 0
    imported_users: List[ImportedEntry] = Field(default_factory=list)
    skipped_users: List[SkippedEntry] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    def add_imported(self, entry: ImportedEntry) -> None:
        self.total_participants += 1
        self.imported_participants += 1
        self.imported_users.append(entry)

    def add_skipped(self, entry: SkippedEntry) -> None:
        if entry.reason not in SKIP_REASONS:
            raise ValueError(f"Unknown skip reason: {entry.reason}")
        self.total_participants += 1
        self.skipped_participants += 1
        self.skipped_users.append(entry)

    def downgrade(self, entry: ImportedEntry, reason: str, detail: Optional[str] = None) -> SkippedEntry:
        """Move a previously imported entry to the skipped list."""
        if reason not in SKIP_REASONS:
            raise ValueError(f"Unknown skip reason: {reason}")
        self.imported_users.remove(entry)
        self.imported_participants -= 1
        skipped = SkippedEntry(
            player_name=entry.player_name,
            player_id=entry.player_id,
            player_birthdate=entry.player_birthdate,
            reason=reason,
            detail=detail,
        )
        self.skipped_participants += 1
        self.skipped_users.append(skipped)
        return skipped

    @property
    def is_consistent(self) -> bool:
        return (
            self.imported_participants + self.skipped_participants == self.total_participants
            and self.imported_participants == len(self.imported_users)
            and self.skipped_participants == len(self.skipped_users)
        )

    def skipped_by_reason(self, reason: str) -> List[SkippedEntry]:
        return [entry for entry in self.skipped_users if entry.reason == reason]


def format_import_report(report: ImportReport) -> str:
    """Render a plain-text summary for organizers."""
    lines = [
        f"Import complete: {report.imported_participants} of {report.total_participants} participants added."
    ]

    sections = (
        (SKIP_NO_ACCOUNT, "No platform account"),
        (SKIP_DUPLICATE, "Already registered"),
        (SKIP_INVALID_DATA, "Invalid data"),
    )
    if report.skipped_participants:
        lines.append("")
        lines.append(f"{report.skipped_participants} participants were not added:")
        for reason, title in sections:
            entries = report.skipped_by_reason(reason)
            if not entries:
                continue
            lines.append("")
            lines.append(f"{title} ({len(entries)}):")
            for entry in entries:
                lines.append(f"- {entry.player_name} (ID: {entry.player_id})")
        if report.skipped_by_reason(SKIP_NO_ACCOUNT):
            lines.append("")
            lines.append("These players need to create an account before they can be registered.")

    low_confidence = [entry for entry in report.imported_users if entry.low_confidence]
    if low_confidence:
        lines.append("")
        lines.append(f"Matched by name only, please review ({len(low_confidence)}):")
        for entry in low_confidence:
            lines.append(f"- {entry.player_name} (ID: {entry.player_id}) -> account {entry.user_id}")

    return "\n".join(lines)
