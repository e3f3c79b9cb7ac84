"""
gaze_system Runner - standalone gaze tracking process
Starts one tracking session and logs calibrated gaze once per second.
Usage: gaze-runner [--duration SECONDS] [--grant] [--calibration model.json]
"""
import argparse
import asyncio
import json
import logging
import signal
import sys

from gaze_system.db import GazeDB
from gaze_system.pipeline import GazePipeline
from gaze_system.sensors.eye_tracking.config import EyeTrackingConfig
from gaze_system.sensors.eye_tracking.errors import TrackingStatus
from gaze_system.sensors.eye_tracking.transform import CalibrationModel

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s'
)
logger = logging.getLogger('gaze_runner')


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Run gaze tracking and log calibrated points")
    parser.add_argument('--duration', type=float, default=0,
                        help="Seconds to run; 0 runs until interrupted")
    parser.add_argument('--grant', action='store_true',
                        help="Record eye tracking permission as granted before starting")
    parser.add_argument('--calibration', metavar='FILE',
                        help="JSON calibration model to publish before starting")
    parser.add_argument('--log-file', default='/tmp/gaze_runner.log',
                        help="Debug log file")
    return parser.parse_args(argv)


async def run(args) -> int:
    config = EyeTrackingConfig.from_env()
    db = GazeDB(config.database_url)
    pipeline = GazePipeline(config, db=db)

    if args.grant:
        pipeline.preference.set(True)
    if args.calibration:
        with open(args.calibration, 'r', encoding='utf-8') as f:
            pipeline.calibration_store.set_model(CalibrationModel.from_dict(json.load(f)))

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    session = pipeline.open_session('runner')
    started = None
    try:
        await session.enable()
        started = session.status
        logger.info(f"Session status: {session.status.value}"
                    + (f" ({session.error})" if session.error else ""))
        if pipeline.calibration_store.needs_calibration:
            logger.warning("Calibration is missing or stale; points are uncorrected")

        elapsed = 0.0
        while not stop.is_set() and (not args.duration or elapsed < args.duration):
            try:
                await asyncio.wait_for(stop.wait(), timeout=1.0)
            except asyncio.TimeoutError:
                pass
            elapsed += 1.0
            point = session.calibrated.get()
            if point is not None:
                logger.info(f"gaze x={point.x:7.1f} y={point.y:7.1f} conf={point.confidence:.2f}")
    finally:
        logger.info("Shutdown requested — stopping pipeline...")
        await pipeline.shutdown()
        db.close()

    return 0 if started is TrackingStatus.ACTIVE else 1


def main(argv=None):
    args = parse_args(argv)
    fh = logging.FileHandler(args.log_file)
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter('%(asctime)s [%(levelname)s] %(name)s: %(message)s'))
    logging.getLogger().addHandler(fh)

    sys.exit(asyncio.run(run(args)))


if __name__ == '__main__':
    main()
