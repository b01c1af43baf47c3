from __future__ import annotations

import argparse
import json
from pathlib import Path


def _write_json(path: Path, data: object) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    # ASCII-only snapshot so diffs stay readable.
    payload = json.dumps(data, ensure_ascii=True, indent=2, sort_keys=True)
    _ = path.write_text(payload + "\n", encoding="utf-8")


def main() -> int:
    parser = argparse.ArgumentParser(description="Write the API's OpenAPI schema to a JSON file.")
    parser.add_argument(
        "--out",
        default="apidocs/openapi-v1.json",
        help="Output file (default: apidocs/openapi-v1.json)",
    )
    args = parser.parse_args()

    # Imported lazily so --help doesn't build the app.
    from drive_backend.main import app

    _write_json(Path(args.out), app.openapi())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
