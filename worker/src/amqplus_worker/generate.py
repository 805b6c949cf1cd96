"""
CLI entry point to run a one-off quiz simulation through the song engine.

Example:
    python -m amqplus_worker.generate --config quiz.json --master-list songs.json --seed demo
"""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
from typing import Optional

from loguru import logger

from .app.settings import Settings
from .services.engine import QuizSongEngine
from .services.exceptions import ResolutionFailure
from .services.sources import HttpSongListStore


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Simulate an AMQ+ quiz configuration.")
    parser.add_argument(
        "--config",
        type=Path,
        required=True,
        help="Path to a quiz configuration JSON file.",
    )
    parser.add_argument(
        "--seed",
        default=None,
        help="Optional seed override (defaults to the configuration's seed).",
    )
    parser.add_argument(
        "--master-list",
        type=Path,
        default=None,
        help="Override the master song list file (defaults to worker settings).",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write the full result JSON to this path.",
    )
    return parser.parse_args()


async def _run(
    config_path: Path,
    *,
    seed: Optional[str],
    master_list: Optional[Path],
    output: Optional[Path],
) -> bool:
    settings_kwargs: dict[str, object] = {}
    if master_list is not None:
        settings_kwargs["master_list_path"] = master_list
    settings = Settings(**settings_kwargs)

    payload = json.loads(config_path.read_text(encoding="utf-8"))
    if seed is not None:
        payload["seed"] = seed

    engine = QuizSongEngine(settings, HttpSongListStore(settings))
    result = await engine.generate(payload)
    metadata = result.metadata

    print(f"seed          : {metadata.seed}")
    print(f"route         : {metadata.selected_route or '-'}")
    print(f"songs         : {metadata.final_count}/{metadata.target_count}")
    print(f"pool          : {metadata.eligible_song_count}/{metadata.source_song_count}")
    print(f"success       : {metadata.success}")
    for status in metadata.basket_status:
        marker = "ok" if status.meets_min else "UNMET"
        print(f"basket        : {status.id} {status.current} [{status.min}-{status.max}] {marker}")
    for error in metadata.loading_errors:
        print(f"load error    : {error.source}: {error.error}")

    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(
            json.dumps(result.model_dump(mode="json", by_alias=True), indent=2),
            encoding="utf-8",
        )
        print(f"output        : {output}")
    return metadata.success


def main() -> None:
    args = _parse_args()
    try:
        success = asyncio.run(
            _run(
                args.config,
                seed=args.seed,
                master_list=args.master_list,
                output=args.output,
            )
        )
    except ResolutionFailure:
        logger.exception("Quiz simulation failed")
        raise SystemExit(2) from None
    raise SystemExit(0 if success else 1)


if __name__ == "__main__":
    main()
