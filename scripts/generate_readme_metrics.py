#!/usr/bin/env python3
"""Regenerate the metrics table in README.md from ibc_watcher.metrics."""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Iterator

# Ensure project root is on the Python path
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from ibc_watcher.metrics import CHANNEL_LABELS, METRIC_DEFINITIONS  # noqa: E402

START_MARKER = "<!-- METRICS_START -->"
END_MARKER = "<!-- METRICS_END -->"


def table_rows() -> Iterator[str]:
    yield "| Metric | Description | Labels |"
    yield "|---|---|---|"
    for name in sorted(METRIC_DEFINITIONS):
        doc, discriminator = METRIC_DEFINITIONS[name]
        labels = ", ".join(CHANNEL_LABELS + [discriminator])
        yield f"| `{name}` | {doc} | {labels} |"


def splice(readme_text: str, table: str) -> str:
    head, rest = readme_text.split(START_MARKER, 1)
    _, tail = rest.split(END_MARKER, 1)
    return f"{head}{START_MARKER}\n{table}\n{END_MARKER}{tail}"


def main() -> None:
    readme = ROOT / "README.md"
    readme.write_text(splice(readme.read_text(), "\n".join(table_rows())))
    print("README.md metrics table updated")


if __name__ == "__main__":
    main()
