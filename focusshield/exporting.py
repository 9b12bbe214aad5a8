from __future__ import annotations

import csv
from pathlib import Path

from .ledger import SessionLedger


def export_sessions_csv(ledger: SessionLedger, out_dir: Path) -> Path:
    out_path = Path(out_dir)
    out_path.mkdir(parents=True, exist_ok=True)
    csv_path = out_path / "focusshield.csv"

    sessions = ledger.confirmed_sessions()

    with csv_path.open("w", encoding="utf-8", newline="") as fp:
        writer = csv.writer(fp)
        writer.writerow(["id", "end_time", "duration_minutes", "provenance"])
        for item in sessions:
            writer.writerow(
                [
                    item.session_id,
                    item.ended_at.isoformat(),
                    item.duration_minutes,
                    item.provenance,
                ]
            )

    return csv_path
