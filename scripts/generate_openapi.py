"""Utility script to export the FastAPI OpenAPI specification."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ledgerbridge.main import create_application


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Write the LedgerBridge OpenAPI document.")
    parser.add_argument("--output", type=Path, default=Path("docs/openapi.json"))
    args = parser.parse_args(argv)

    spec = create_application().openapi()
    args.output.parent.mkdir(parents=True, exist_ok=True)
    args.output.write_text(json.dumps(spec, indent=2, sort_keys=True), encoding="utf-8")
    paths = ", ".join(sorted(spec.get("paths", {})))
    print(f"OpenAPI specification written to {args.output} ({paths})")


if __name__ == "__main__":
    main()
