"""
Attendance Scanner - Main Entry Point

Single-camera face scanner for a tutoring center: registers subjects with
a pose-guided scan and marks daily attendance by face recognition.
"""

import os
import sys
import argparse
from dataclasses import replace
from pathlib import Path

from .announce import Announcer
from .app import create_app
from .config import Config, load_config
from .face_app import FaceDetector
from .logging_config import setup_logging, get_logger
from .scanner import ScannerService
from .store import BackendStore, MemoryStore

logger = get_logger(__name__)


def _load_local_env() -> None:
    """Load environment variables from attendance_scanner/.env if present."""
    env_path = Path(__file__).resolve().parent / '.env'
    if not env_path.exists():
        return

    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith('#') or '=' not in line:
            continue
        key, value = line.split('=', 1)
        os.environ.setdefault(key.strip(), value.strip())


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description='Attendance Scanner - Face Enrollment and Recognition'
    )

    parser.add_argument(
        '--backend-url',
        type=str,
        help='Document store API URL (or set BACKEND_URL)'
    )

    parser.add_argument(
        '--camera',
        type=str,
        help='Camera index or stream URL (or set CAMERA_SOURCE)'
    )

    parser.add_argument(
        '--port',
        type=int,
        help='HTTP port for API and preview (or set VIDEO_PORT)'
    )

    parser.add_argument(
        '--memory-store',
        action='store_true',
        help='Keep identities and attendance in memory instead of the backend'
    )

    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )

    return parser.parse_args(argv)


def _apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Command line flags take precedence over environment variables."""
    changes = {}
    if args.backend_url:
        changes['backend_url'] = args.backend_url
    if args.camera is not None:
        changes['camera_source'] = args.camera
        if not os.getenv('CAMERA_ID'):
            changes['camera_id'] = args.camera
    if args.port is not None:
        changes['video_port'] = args.port
    if args.debug:
        changes['debug_mode'] = True
    return replace(config, **changes) if changes else config


def main(argv=None) -> None:
    """Main entry point."""
    _load_local_env()
    args = parse_args(argv)

    try:
        config = _apply_overrides(load_config(), args)
    except ValueError as e:
        print(f'Invalid configuration: {e}', file=sys.stderr)
        sys.exit(2)

    setup_logging(config.camera_id, config.debug_mode)
    logger = get_logger(__name__)

    logger.info('=' * 60)
    logger.info('Attendance Scanner')
    logger.info('=' * 60)
    logger.info(f'Camera: {config.camera_source}')
    logger.info(f'Store: {"memory" if args.memory_store else config.backend_url}')
    logger.info(f'Match: {config.distance_metric} < {config.match_distance_threshold}, '
                f'{config.vote_threshold} votes in {config.max_stabilization_seconds}s')
    logger.info('=' * 60)

    detector = None
    model_error = None
    try:
        detector = FaceDetector.from_config(config)
    except Exception as e:
        # Service stays up so the UI can report the problem
        model_error = str(e)
        logger.error(f'Failed to load face models: {e}', exc_info=True)

    store = MemoryStore() if args.memory_store else BackendStore(config.backend_url)

    service = ScannerService(
        config=config,
        store=store,
        detector=detector,
        announce=Announcer(enabled=config.announce_enabled),
        model_error=model_error,
    )
    service.reload_identities()

    app = create_app(service, config)

    try:
        logger.info(f'🌐 HTTP API on port {config.video_port}')
        app.run(host='0.0.0.0', port=config.video_port, threaded=True, use_reloader=False)
    except KeyboardInterrupt:
        logger.info('Received keyboard interrupt, shutting down...')
    except Exception as e:
        logger.error(f'Fatal error: {e}', exc_info=True)
        sys.exit(1)
    finally:
        service.shutdown()


if __name__ == '__main__':
    main()
