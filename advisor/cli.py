"""Offline analysis of a captured colonist.io session.

Usage:
    python -m advisor.cli capture.json [--scheme axial] [--log-level DEBUG]

The capture is either a JSON list of frames or {"messages": [...]}. Each
frame is a decoded value, an interceptor record {direction, type, data}
whose data is already decoded, or a record carrying undecoded "raw"
bytes (list of ints for binary, a string for text).
"""
import argparse
import json
import logging
import sys
from typing import Any, List

from advisor import config
from advisor.session import AdvisorSession
from advisor.topology import SCHEMES, TopologyError, get_scheme

logger = logging.getLogger(__name__)


def load_capture(path: str) -> List[Any]:
    with open(path) as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("messages", [])
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list of frames or {{'messages': [...]}}")
    return data


def replay(session: AdvisorSession, frames: List[Any]) -> None:
    for frame in frames:
        if isinstance(frame, dict) and "direction" in frame and "raw" in frame:
            session.process_frame(frame)
        elif isinstance(frame, dict) and "direction" in frame and "data" in frame:
            session.process_value(frame["data"], direction=frame["direction"])
        else:
            session.process_value(frame)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="colonist.io capture analyzer")
    parser.add_argument("capture", help="JSON capture file")
    parser.add_argument("--scheme", choices=sorted(SCHEMES), default=config.COORD_SCHEME,
                        help="Corner/edge coordinate offset convention")
    parser.add_argument("--strict", action="store_true",
                        help="Fail on edges that match more than two corners")
    parser.add_argument("--log-level", default=config.LOG_LEVEL,
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--shapes", action="store_true",
                        help="Print distinct message fingerprints instead of the analysis")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    try:
        frames = load_capture(args.capture)
    except (OSError, ValueError) as e:
        logger.error(f"Cannot read capture: {e}")
        return 1

    session = AdvisorSession(scheme=get_scheme(args.scheme), strict_topology=args.strict)
    try:
        replay(session, frames)
    except TopologyError as e:
        logger.error(f"Board topology check failed: {e}")
        return 2
    logger.info(
        f"Replayed {session.frames_seen} frames ({session.frames_dropped} dropped), "
        f"{len(session.catalog)} distinct shapes"
    )

    if args.shapes:
        output = {entry.fingerprint: entry.count for entry in session.catalog}
    else:
        output = session.analyze()
    json.dump(output, sys.stdout, indent=2, default=str)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
