"""CLI entry point for the timeline image studio."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from timeline_genai.catalog import timeline_display_name
from timeline_genai.config import settings
from timeline_genai.persistence import JsonFilePersistence
from timeline_genai.store import TimelineStore


def _state_path(value: str | None) -> Path:
    return Path(value) if value else Path(settings.data_dir) / settings.state_file


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from timeline_genai.api.app import create_app

    uvicorn.run(create_app(), host=args.host, port=args.port)
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    store = TimelineStore(persistence=JsonFilePersistence(_state_path(args.state)))
    current = store.get_settings()
    print(f"Settings: {current.model} {current.size} {current.quality} x{current.variations}")
    if not store.projects:
        print("No projects.")
        return 0
    for project in store.projects:
        print(f"{project.name} [{project.id}]")
        for position, timeline in enumerate(project.timelines):
            origin = f" (from {timeline.from_timeline_id})" if timeline.from_timeline_id else ""
            print(f"  {timeline_display_name(timeline.name, position)} [{timeline.id}]{origin}")
            for card in sorted(timeline.cards, key=lambda c: c.index):
                prompt = card.context_prompt[:60] or "-"
                print(f"    #{card.index} {prompt} ({len(card.output_images)} output(s))")
    return 0


def cmd_reset(args: argparse.Namespace) -> int:
    if not args.yes:
        print("This permanently deletes all projects, timelines and settings. Re-run with --yes to confirm.")
        return 1
    store = TimelineStore(persistence=JsonFilePersistence(_state_path(args.state)))
    store.reset_store()
    print("Store reset.")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Timeline image studio")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--state", help="Path to the persisted store snapshot")
    sub = parser.add_subparsers(dest="command")

    serve_parser = sub.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)

    sub.add_parser("show", help="Print projects, timelines and cards")

    reset_parser = sub.add_parser("reset", help="Restore factory defaults")
    reset_parser.add_argument("--yes", action="store_true", help="Confirm the reset")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    commands = {"serve": cmd_serve, "show": cmd_show, "reset": cmd_reset}
    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 1
    return handler(args)


if __name__ == "__main__":
    sys.exit(main())
