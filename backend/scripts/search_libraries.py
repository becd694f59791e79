"""Run one library search from the command line and print the reconciled result.

Usage:
    python -m scripts.search_libraries --lat 37.7749 --lon -122.4194
    python -m scripts.search_libraries --address "100 Larkin St, San Francisco"

Visited flags are read from the same SQLite store the API uses.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from domain.errors import LibraryFinderError
from domain.models import Coordinate
from services.library_search import get_default_library_search_service


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Search for nearby libraries")
    where = parser.add_mutually_exclusive_group(required=True)
    where.add_argument("--address", help="Free-text address to search around")
    where.add_argument("--lat", type=float, help="Center latitude (requires --lon)")
    parser.add_argument("--lon", type=float, help="Center longitude")
    parser.add_argument("--radius-m", type=float, default=None)
    parser.add_argument("--query", default=None, help="Search term (default: LIBRARY_QUERY)")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    if args.lat is not None and args.lon is None:
        parser.error("--lat requires --lon")

    service = get_default_library_search_service()
    try:
        if args.address:
            outcome = service.search_address(args.address, query=args.query, radius_m=args.radius_m)
        else:
            outcome = service.search_at(Coordinate(args.lat, args.lon), query=args.query, radius_m=args.radius_m)
    except LibraryFinderError as exc:
        print(f"error: {exc.message}", file=sys.stderr)
        return 1
    finally:
        service.shutdown()

    print(
        json.dumps(
            {
                "places": [a.to_dict() for a in outcome.places],
                "viewport": outcome.viewport.to_dict(),
                "pin": outcome.pin.to_dict() if outcome.pin else None,
                "warnings": outcome.warnings,
            },
            indent=2,
        )
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
