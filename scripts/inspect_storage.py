#!/usr/bin/env python3
"""List the entries of a file-backed grantsnap storage.

Each key is classified as a persisted entry, a component snapshot, a
timestamp marker or an opaque value, with its version and age.

Usage
-----
::

    python scripts/inspect_storage.py ~/.grantsnap/state.json
    python scripts/inspect_storage.py state.json --prefix profileHub --json

Options::

    --prefix TEXT       Only show keys starting with TEXT
    --json              Output as machine-readable JSON
    --clear-prefix      Remove the matching keys instead of listing them
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

# Allow running from the repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pydantic import ValidationError  # noqa: E402

from grantsnap._clock import now_ms  # noqa: E402
from grantsnap.models import EphemeralEntry, PersistedEntry  # noqa: E402
from grantsnap.persisted import TIMESTAMP_SUFFIX  # noqa: E402
from grantsnap.storage import FileStorage, clear_prefix  # noqa: E402


def _describe(key: str, raw: str, now: int) -> dict[str, Any]:
    row: dict[str, Any] = {"key": key, "kind": "opaque", "bytes": len(raw)}
    if key.endswith(TIMESTAMP_SUFFIX) and raw.isdigit():
        row.update(kind="timestamp", age_s=(now - int(raw)) / 1000)
        return row
    try:
        entry = PersistedEntry.model_validate_json(raw)
        row.update(kind="persisted", version=entry.version, age_s=(now - entry.timestamp) / 1000)
        return row
    except ValidationError:
        pass
    try:
        snapshot = EphemeralEntry.model_validate_json(raw)
        row.update(kind="component", component_id=snapshot.component_id, age_s=(now - snapshot.timestamp) / 1000)
    except ValidationError:
        pass
    return row


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("path", type=Path, help="storage file")
    parser.add_argument("--prefix", default="", help="only keys starting with this prefix")
    parser.add_argument("--json", action="store_true", help="JSON output")
    parser.add_argument("--clear-prefix", action="store_true", help="remove matching keys")
    args = parser.parse_args()

    if not args.path.exists():
        print(f"No storage file at {args.path}", file=sys.stderr)
        return 1

    storage = FileStorage(args.path)

    if args.clear_prefix:
        if not args.prefix:
            print("--clear-prefix requires --prefix", file=sys.stderr)
            return 2
        removed = clear_prefix(storage, args.prefix)
        print(f"Removed {removed} key(s)")
        return 0

    now = now_ms()
    rows = []
    for key in sorted(storage.keys()):
        if not key.startswith(args.prefix):
            continue
        raw = storage.get(key)
        if raw is not None:
            rows.append(_describe(key, raw, now))

    if args.json:
        print(json.dumps(rows, indent=2))
        return 0

    for row in rows:
        details = " ".join(f"{k}={v}" for k, v in row.items() if k not in {"key", "kind"})
        print(f"{row['kind']:<10} {row['key']}  {details}")
    print(f"\n{len(rows)} key(s)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
