"""Command-line entry points for training, resuming, and plotting evolution runs."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

from parkevo.configs.loader import ConfigLoader, EvolutionConfig
from parkevo.core.analytics import summarize_history
from parkevo.core.checkpointing import Checkpoint
from parkevo.data.checkpoint_store import CheckpointStore
from parkevo.data.logger import RunLogger
from parkevo.main import DEFAULT_CONFIG_PATH, build_components
from parkevo.visualization.plotting import plot_run


def _train(
    config: EvolutionConfig,
    db_path: Path,
    checkpoint_dir: Path | None,
    generations: int,
    checkpoint: Checkpoint | None = None,
) -> str:
    logger = RunLogger(db_path)
    with build_components(config=config, logger=logger, checkpoint_dir=checkpoint_dir) as run:
        run.run(generations, checkpoint=checkpoint)
        run_id = run.run_id
    if run_id is None:
        raise RuntimeError("Expected run id when logger is configured.")
    return run_id


def _resolve_run_id(parser: argparse.ArgumentParser, db_path: str, run_id: str | None) -> str:
    if run_id is not None:
        return run_id
    logger = RunLogger(db_path)
    try:
        latest = logger.latest_run_id()
    finally:
        logger.close()
    if latest is None:
        parser.error(f"No runs recorded in {db_path}.")
    return latest


def _add_training_arguments(command: argparse.ArgumentParser) -> None:
    command.add_argument("--db", default="parkevo_runs.db")
    command.add_argument("--checkpoint-dir", default=None)
    command.add_argument("--generations", type=int, default=None)


def run_cli(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="parkevo")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    sub = parser.add_subparsers(dest="command", required=True)

    run_cmd = sub.add_parser("run")
    run_cmd.add_argument("--config", default=str(DEFAULT_CONFIG_PATH))
    _add_training_arguments(run_cmd)

    resume_cmd = sub.add_parser("resume")
    resume_cmd.add_argument("--checkpoint", required=True)
    resume_cmd.add_argument("--config", default=str(DEFAULT_CONFIG_PATH))
    _add_training_arguments(resume_cmd)

    plot_cmd = sub.add_parser("plot")
    plot_cmd.add_argument("--run", default=None)
    plot_cmd.add_argument("--db", default="parkevo_runs.db")
    plot_cmd.add_argument("--out", default="artifacts/loss.png")

    summary_cmd = sub.add_parser("summary")
    summary_cmd.add_argument("--run", default=None)
    summary_cmd.add_argument("--db", default="parkevo_runs.db")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "run":
        config = ConfigLoader.load(args.config)
        generations = config.generations if args.generations is None else args.generations
        checkpoint_dir = Path(args.checkpoint_dir) if args.checkpoint_dir else None
        print(_train(config, Path(args.db), checkpoint_dir, generations))
        return 0

    if args.command == "resume":
        checkpoint = CheckpointStore().load(Path(args.checkpoint))
        config = ConfigLoader.load(args.config).replace(genome_length=len(checkpoint.generation[0]))
        generations = config.generations if args.generations is None else args.generations
        checkpoint_dir = Path(args.checkpoint_dir) if args.checkpoint_dir else Path(args.checkpoint).parent
        print(_train(config, Path(args.db), checkpoint_dir, generations, checkpoint=checkpoint))
        return 0

    if args.command == "plot":
        run_id = _resolve_run_id(parser, args.db, args.run)
        path = plot_run(args.db, run_id, args.out)
        print(path)
        return 0

    if args.command == "summary":
        run_id = _resolve_run_id(parser, args.db, args.run)
        logger = RunLogger(args.db)
        try:
            records = logger.fetch_history(run_id)
        finally:
            logger.close()
        first = records[0].generation_index if records else 0
        summary = summarize_history([record.min_loss for record in records], first_generation=first)
        for key, value in summary.items():
            print(f"{key}: {value:g}")
        return 0

    return 1


if __name__ == "__main__":
    raise SystemExit(run_cli())
