#!/usr/bin/env python3
"""
Development launcher for the audio recorder.

- Enables dev logging (DEBUG) unless DEV is already set
- Runs the recorder daemon in the foreground
- Ctrl-C exits cleanly after the current clip is flushed
"""

import os
import sys

from audio_recorder import recorder_daemon


def main(argv=None):
    os.environ.setdefault("DEV", "1")
    print("[dev] Running audio recorder (Ctrl-C to exit)", flush=True)
    return recorder_daemon.main(argv)


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
