"""Analyze a few Go positions concurrently through one shared KataGo process."""

import argparse
import logging
import sys
import time
from concurrent.futures import Future
from concurrent.futures import ThreadPoolExecutor

from enginemux import EngineMuxError
from enginemux import EngineSession
from enginemux.katago import AnalysisRequest
from enginemux.katago import AnalysisResponse
from enginemux.katago import analyze
from enginemux.katago import open_katago
from enginemux.log import configure_logging

OPENINGS: list[list[tuple[str, str]]] = [
    [("B", "Q16"), ("W", "D4")],
    [("B", "Q4"), ("W", "D16")],
    [("B", "R16"), ("W", "C4"), ("B", "Q3")],
    [("B", "D4"), ("W", "Q16"), ("B", "Q4"), ("W", "D16")],
]


def _parse_args() -> argparse.Namespace:
    """Parse demo options.

    :returns: Parsed options.
    """
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--katago", default="katago", help="KataGo executable.")
    parser.add_argument("--config", required=True, help="Analysis config file.")
    parser.add_argument("--model", required=True, help="Network model file.")
    parser.add_argument("--max-visits", type=int, default=100)
    parser.add_argument("--timeout", type=float, default=120.0, help="Per-query deadline in seconds.")
    parser.add_argument("--verbose", action="store_true")
    return parser.parse_args()


def main() -> int:
    """Run the demonstration.

    :returns: Process exit code where ``0`` indicates success.
    """
    args: argparse.Namespace = _parse_args()
    configure_logging(logging.DEBUG if args.verbose is True else logging.INFO)

    requests: list[AnalysisRequest] = [
        AnalysisRequest(id=f"opening-{index}", moves=moves, max_visits=args.max_visits)
        for index, moves in enumerate(OPENINGS)
    ]

    try:
        session: EngineSession = open_katago(
            args.config,
            args.model,
            katago_binary=args.katago,
            request_timeout=args.timeout,
            kill_timeout=10.0,
        )
    except EngineMuxError as exc:
        print(f"could not start KataGo: {exc}")
        return 1

    start_time: float = time.perf_counter()
    with session, ThreadPoolExecutor(max_workers=len(requests)) as executor:
        futures: list[Future[AnalysisResponse]] = [
            executor.submit(analyze, session, request) for request in requests
        ]
        for request, future in zip(requests, futures):
            try:
                response: AnalysisResponse = future.result()
            except EngineMuxError as exc:
                print(f"{request.id}: failed: {exc}")
                continue
            best: str = "-"
            if len(response.move_infos) > 0:
                top = response.move_infos[0]
                best = f"{top.move} winrate={top.winrate:.3f} visits={top.visits}"
            print(f"{response.id}: best {best}")

    elapsed_seconds: float = time.perf_counter() - start_time
    print(f"analyzed {len(requests)} positions in {elapsed_seconds:.2f}s")
    return 0


if __name__ == "__main__":
    sys.exit(main())
