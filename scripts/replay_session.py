#!/usr/bin/env python3
"""
Replay a recorded pose stream through the detection engine.

Usage:
    python scripts/replay_session.py frames.jsonl
    python scripts/replay_session.py frames.jsonl --config thresholds.json --save-dir recordings

Input: one JSON object per line, {"timestamp": <seconds>, "keypoints": [...]}
Output: one JSON line per confirmed event on stdout; a summary on stderr.
"""

import argparse
import json
import logging
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Config
from engines.pose_events.manager import DetectionManager
from engines.pose_events.rules import DetectionConfig
from services.recording_session import MonitoringSession, RecordingStore

logger = logging.getLogger('replay_session')


def read_frames(lines):
    """Yield (timestamp, keypoints) from JSONL lines; blank lines are skipped."""
    for lineno, line in enumerate(lines, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            frame = json.loads(line)
            yield float(frame['timestamp']), frame.get('keypoints') or []
        except (ValueError, KeyError, TypeError) as e:
            raise ValueError(f"line {lineno}: invalid frame ({e})") from e


def replay(lines, config=None, transcript=None):
    """Run every frame through a replay-mode session. Returns RecordingMetadata."""
    session = MonitoringSession(manager=DetectionManager(config or DetectionConfig()),
                                camera_id='replay')
    session.start(replay=True)
    last_ts = 0.0
    for timestamp, keypoints in read_frames(lines):
        session.process_frame(keypoints, timestamp)
        last_ts = max(last_ts, timestamp)
    if transcript:
        session.add_transcript(transcript)
    stats = session.manager.get_stats()
    metadata = session.stop(duration=last_ts)
    logger.info(
        f"Replayed {stats['frames_processed']} frames "
        f"({stats['frames_absorbed']} without evidence), {len(metadata.events)} events"
    )
    return metadata


def main(argv=None):
    parser = argparse.ArgumentParser(description='Replay a JSONL pose stream through the detection engine')
    parser.add_argument('frames', type=str, help='JSONL file of pose frames ("-" for stdin)')
    parser.add_argument('--config', type=str, help='JSON file with detection thresholds (snake_case or camelCase)')
    parser.add_argument('--save-dir', type=str, default=None,
                        help='Store the recording metadata JSON in this directory')
    parser.add_argument('--transcript', type=str, default=None, help='Transcript text to attach')
    parser.add_argument('--log-level', type=str, default=Config.LOG_LEVEL)
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
    )

    if args.config:
        with open(args.config) as f:
            config = DetectionConfig.from_dict(json.load(f))
    else:
        config = Config.detection_config()

    if args.frames == '-':
        metadata = replay(sys.stdin, config, args.transcript)
    else:
        if not os.path.isfile(args.frames):
            logger.error(f"File not found: {args.frames}")
            return 1
        with open(args.frames) as f:
            metadata = replay(f, config, args.transcript)

    for event in metadata.events:
        print(json.dumps(event.to_dict()))

    if args.save_dir:
        path = RecordingStore(args.save_dir).save(metadata)
        logger.info(f"Recording metadata written to {path}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
