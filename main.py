#!/usr/bin/env python3
"""
EchoWrite v1.0.0: headless entry point.
Watches a folder and transcribes every media file dropped into it.
"""

import sys
import os
import time
import shutil
import logging
import argparse
import traceback
from pathlib import Path
from datetime import datetime

# ── Ensure Homebrew paths are in PATH ────────────────────────────────
# Launched outside a login shell, Homebrew's bin directories (ffmpeg)
# are missing from PATH.
HOMEBREW_PATHS = [
    "/opt/homebrew/bin",          # Apple Silicon default
    "/usr/local/bin",             # Intel Mac default
]

current_path = os.environ.get("PATH", "")
for p in HOMEBREW_PATHS:
    if os.path.isdir(p) and p not in current_path:
        current_path = p + os.pathsep + current_path
os.environ["PATH"] = current_path

PROJECT_ROOT = Path(__file__).resolve().parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from echowrite.core.config import AppConfig
from echowrite.core.constants import APP_NAME, APP_VERSION, LOG_DIR, FilePhase
from echowrite.core.models import FileState
from echowrite.core.pipeline import Pipeline
from echowrite.core.security_utils import keychain_set_api_key

logger = logging.getLogger("echowrite")


def setup_logging(verbose: bool = False):
    """Log to ~/Library/Logs/EchoWrite/app.log and stderr."""
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(LOG_DIR / "app.log", encoding="utf-8"),
            logging.StreamHandler(sys.stderr),
        ],
    )


def check_prerequisites():
    """Exit if ffmpeg is not available."""
    ffmpeg = shutil.which("ffmpeg")
    if not ffmpeg:
        logger.error("ffmpeg not found (install with: brew install ffmpeg). PATH = %s",
                     os.environ.get("PATH", ""))
        sys.exit(1)
    logger.info("ffmpeg found at: %s", ffmpeg)


def log_state(path: str, state: FileState):
    name = Path(path).name
    if state.phase == FilePhase.PROCESSING:
        logger.info("%s: %d%%", name, int(state.progress * 100))
    elif state.phase == FilePhase.FAILED:
        logger.error("%s: failed: %s", name, state.error)
    else:
        logger.info("%s: %s", name, state.phase)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog=APP_NAME.lower(),
                                     description="Transcribe media files dropped into a folder.")
    parser.add_argument("root", nargs="?", help="folder to watch (default: from config)")
    parser.add_argument("--chunk-sec", type=int, help="seconds of audio per recognition call")
    parser.add_argument("--set-api-key", metavar="KEY", help="store the Deepgram API key in the Keychain and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None):
    args = parse_args(argv)
    setup_logging(args.verbose)

    if args.set_api_key:
        ok = keychain_set_api_key(args.set_api_key)
        logger.info("API key %s", "stored" if ok else "could not be stored")
        sys.exit(0 if ok else 1)

    # Command-line values apply to this run only
    config = AppConfig()
    if args.root:
        config.override('watch_root', args.root)
    if args.chunk_sec:
        config.override('chunk_sec', args.chunk_sec)

    logger.info("=" * 60)
    logger.info("%s v%s starting at %s", APP_NAME, APP_VERSION, datetime.now().isoformat())
    logger.info("Python: %s", sys.executable)
    logger.info("Watch root: %s", config.watch_root)
    logger.info("=" * 60)

    pipeline = None
    try:
        check_prerequisites()
        pipeline = Pipeline.from_config(config)
        pipeline.scheduler.on_state_changed = log_state
        pipeline.start()
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Shutting down")
    except Exception as e:
        logger.critical("Fatal error: %s: %s\n%s", type(e).__name__, e, traceback.format_exc())
        sys.exit(1)
    finally:
        if pipeline is not None:
            pipeline.stop(timeout=5)


if __name__ == "__main__":
    main()
