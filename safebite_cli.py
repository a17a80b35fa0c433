import argparse
import base64
import json
import mimetypes
import sys
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

import httpx

from safebite.streaming import materialize_steps


DEFAULT_API_BASE = "http://127.0.0.1:8000"
SMOKE_BARCODE = "0123456789"
STATUS_MARKS = {"pending": " ", "running": "~", "completed": "x", "error": "!"}


def _join_url(base: str, path: str) -> str:
    return base.rstrip("/") + path


def parse_sse_lines(lines: Iterator[str]) -> Iterator[Tuple[str, Any]]:
    """Yield (event, data) pairs from raw SSE lines."""
    event = "message"
    data_lines: List[str] = []
    for raw in lines:
        line = raw.rstrip("\r")
        if not line:
            if data_lines:
                yield event, json.loads("\n".join(data_lines))
            event, data_lines = "message", []
            continue
        if line.startswith("event:"):
            event = line[len("event:") :].strip()
        elif line.startswith("data:"):
            data_lines.append(line[len("data:") :].strip())
    if data_lines:
        yield event, json.loads("\n".join(data_lines))


def build_payload(args: argparse.Namespace) -> Dict[str, Any]:
    prefs = {"user_language": args.language, "diet_restriction": args.diet, "location": args.location}
    if args.barcode:
        return {"input_type": "barcode", "barcode": args.barcode, "prefs": prefs}
    if args.image:
        path = Path(args.image)
        mime = mimetypes.guess_type(path.name)[0] or "image/jpeg"
        return {
            "input_type": "image",
            "image_base64": base64.b64encode(path.read_bytes()).decode("ascii"),
            "mime_type": mime,
            "raw_text": args.text,
            "prefs": prefs,
        }
    if args.recipe:
        return {"input_type": "recipe", "recipe": args.recipe, "prefs": prefs}
    return {"input_type": "text", "raw_text": args.text or "", "prefs": prefs}


def _print_steps(events: List[Dict[str, Any]]) -> None:
    for step in materialize_steps(events):
        mark = STATUS_MARKS.get(step.get("status"), "?")
        details = f" ({step['details']})" if step.get("details") else ""
        print(f"  [{mark}] {step.get('label')}{details}")


def stream_run(client: httpx.Client, base: str, payload: Dict[str, Any], quiet: bool = False) -> Optional[Dict[str, Any]]:
    resp = client.post(_join_url(base, "/api/agent/run"), json=payload, timeout=10)
    if resp.status_code >= 400:
        print(f"Failed to start run: HTTP {resp.status_code} {resp.text}")
        return None
    session_id = resp.json()["session_id"]
    print(f"Session: {session_id}")
    events: List[Dict[str, Any]] = []
    with client.stream(
        "GET", _join_url(base, "/api/agent/stream"), params={"session_id": session_id}, timeout=None
    ) as stream:
        for event, data in parse_sse_lines(stream.iter_lines()):
            if event == "step":
                events.append(data)
                if not quiet:
                    print(f"- {data.get('id')}: {data.get('label')} [{data.get('status')}]")
            elif event == "final":
                _print_steps(events)
                return data
            elif event == "error":
                _print_steps(events)
                print(f"Run failed: {data.get('message')}")
                return None
    return None


def run_assess(args: argparse.Namespace) -> int:
    payload = build_payload(args)
    with httpx.Client() as client:
        report = stream_run(client, args.base_url, payload, quiet=args.quiet)
    if report is None:
        return 1
    print(json.dumps(report, indent=2))
    return 0


def run_smoke(args: argparse.Namespace) -> int:
    payload = {"input_type": "barcode", "barcode": SMOKE_BARCODE}
    with httpx.Client() as client:
        report = stream_run(client, args.base_url, payload, quiet=True)
    if report is None:
        print("Final event not seen")
        return 1
    print("Smoke test passed")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="SafeBite CLI")
    parser.add_argument("--base-url", default=DEFAULT_API_BASE, help="API base URL")
    subparsers = parser.add_subparsers(dest="command")

    run = subparsers.add_parser("run", help="Assess one item and stream progress")
    source = run.add_mutually_exclusive_group(required=True)
    source.add_argument("--text", help="Free-text description of the food")
    source.add_argument("--barcode", help="Product barcode")
    source.add_argument("--recipe", help="Recipe text")
    source.add_argument("--image", help="Path to a photo of the food")
    run.add_argument("--language", default="English")
    run.add_argument("--diet", default="none")
    run.add_argument("--location", default="")
    run.add_argument("--quiet", action="store_true", help="Only print the final step list and report")

    subparsers.add_parser("smoke", help=f"End-to-end check with barcode {SMOKE_BARCODE}")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "run":
        return run_assess(args)
    if args.command == "smoke":
        return run_smoke(args)
    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
