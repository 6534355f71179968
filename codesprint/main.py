"""
Main entry point for the CodeSprint grading server.

Wires storage, the judge client, the grader and its worker pool into the
Flask API, or runs a one-off maintenance command.
"""

import argparse
import os
import sys
from datetime import datetime

from .api.server import create_app, run_api
from .engine.executor import ExecutionClient
from .engine.grader import Grader
from .engine.intake import SubmissionService
from .engine.leaderboard import LeaderboardMaintainer
from .engine.scheduler import GradingPool
from .engine.errors import CodeSprintError
from .engine.storage import DuckDBStorage
from .utils.config_manager import ConfigManager, get_config
from .utils.logger_config import get_logger, setup_logging


def setup_logging_from_config(config: ConfigManager) -> None:
    """Setup logging based on configuration"""
    log_config = config.get_section("log")
    port = config.get("server.port", 8080)

    log_dir = log_config.get("dir", "logs/server_logs")
    os.makedirs(log_dir, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_filename = os.path.join(log_dir, f"server_{port}_{timestamp}.log")

    setup_logging(
        level=log_config.get("level", "INFO"),
        log_file=log_filename,
        enable_colors=log_config.get("enable_colors", True)
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='CodeSprint - contest submission grading server')

    # Server configuration
    parser.add_argument('--config', default='config/server_config.json',
                       help='Path to server configuration file')
    parser.add_argument('--host', help='Host to bind the API server')
    parser.add_argument('--port', type=int, help='Port to bind the API server')
    parser.add_argument('--debug', action='store_true', help='Enable debug mode')

    # Logging configuration
    parser.add_argument('--log-level',
                       choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                       help='Override log level')
    parser.add_argument('--log-dir', help='Override log directory')

    # Judge configuration
    parser.add_argument('--judge-url', help='Override Judge0 base URL')
    parser.add_argument('--poll-interval', type=float, help='Seconds between judge polls')
    parser.add_argument('--poll-max-attempts', type=int, help='Judge polls before giving up on a run')

    # Grading pool configuration
    parser.add_argument('--max-workers', type=int, help='Concurrent grading workers')
    parser.add_argument('--max-pending', type=int, help='Submissions queued or running before intake rejects')

    # Database configuration
    parser.add_argument('--db-path', help='Override database path')

    # Maintenance
    parser.add_argument('--rebuild-leaderboard', metavar='CONTEST_ID',
                       help='Recompute a contest leaderboard from accepted submissions and exit')
    return parser


def apply_overrides(config: ConfigManager, args: argparse.Namespace) -> None:
    """Command-line flags take precedence over file and environment"""
    overrides = {
        "server.host": args.host,
        "server.port": args.port,
        "log.level": args.log_level,
        "log.dir": args.log_dir,
        "judge.url": args.judge_url,
        "judge.poll_interval": args.poll_interval,
        "judge.poll_max_attempts": args.poll_max_attempts,
        "grading.max_workers": args.max_workers,
        "grading.max_pending": args.max_pending,
        "db.path": args.db_path,
    }
    for key, value in overrides.items():
        if value is not None:
            config.set(key, value)


def main(argv=None) -> int:
    """Main entry point for the CodeSprint CLI"""
    args = build_parser().parse_args(argv)

    config = get_config(args.config)
    apply_overrides(config, args)
    setup_logging_from_config(config)
    logger = get_logger("main")

    storage = DuckDBStorage(config.get("db.path", "data/codesprint.duckdb"))
    leaderboard = LeaderboardMaintainer(storage)

    if args.rebuild_leaderboard:
        try:
            entries = leaderboard.rebuild(args.rebuild_leaderboard)
        except CodeSprintError as e:
            logger.error(f"Leaderboard rebuild failed: {e}")
            return 1
        finally:
            storage.close()
        for entry in entries:
            print(f"{entry.rank:>4}  {entry.user_id}  solved={entry.solved_count}  penalty={entry.penalty}")
        return 0

    executor = ExecutionClient(
        base_url=config.get("judge.url", "http://localhost:2358"),
        request_timeout=config.get("judge.request_timeout", 10),
    )
    grader = Grader(
        storage,
        executor,
        poll_max_attempts=config.get("judge.poll_max_attempts", 30),
        poll_interval=config.get("judge.poll_interval", 2.0),
        leaderboard=leaderboard,
    )
    pool = GradingPool(
        grader,
        max_workers=config.get("grading.max_workers", 8),
        max_pending=config.get("grading.max_pending", 64),
    )
    service = SubmissionService(storage, pool)
    app = create_app(service, storage, executor, leaderboard)

    logger.info(f"Judge at {executor.base_url}, database at {config.get('db.path')}")
    try:
        run_api(
            app,
            host=config.get("server.host", "0.0.0.0"),
            port=config.get("server.port", 8080),
            debug=args.debug,
        )
    except KeyboardInterrupt:
        logger.info("Shutting down CodeSprint API server...")
    finally:
        pool.shutdown(wait=True, cancel_pending=True)
        storage.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
