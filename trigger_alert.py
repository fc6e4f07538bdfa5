#!/usr/bin/env python3
"""Publish a fake scam transcript to exercise the alert path end to end.

Bypasses capture and speech recognition to verify that:
  1. the risk monitor subscribes to TRANSCRIPT_PORT (5556)
  2. a high-severity cue escalates the call to Scam
  3. the alert output speaks a warning and logs a notification

Usage:
  1. Start the risk monitor and alert output (separate terminals):
     python -m voiceshield.core.session
     python -m voiceshield.core.voice_alert
  2. Run this script:
     python trigger_alert.py [--locale es-ES]

Expected: a "[NOTIFY] High risk: possible fraud" log line and a spoken warning.
"""

from __future__ import annotations

import argparse
import sys
import time

import zmq

from voiceshield.core.message_bus import TRANSCRIPT_PORT, TRANSCRIPT_TOPIC, MessageBus

FAKE_TRANSCRIPTS = {
    "en-US": "this is your bank, please read me your one-time code right away",
    "es-ES": "le llamamos del banco, dime tu código de verificación ahora",
    "fr-FR": "ici votre banque, dis moi ton code de vérification tout de suite",
}


def main() -> int:
    parser = argparse.ArgumentParser(description="Publish a fake scam transcript")
    parser.add_argument("--locale", default="en-US", choices=sorted(FAKE_TRANSCRIPTS))
    args = parser.parse_args()

    payload = {
        "text": FAKE_TRANSCRIPTS[args.locale],
        "is_final": True,
        "locale": args.locale,
    }
    print(f"Publishing fake transcript to port {TRANSCRIPT_PORT}: {payload['text']!r}")

    bus = MessageBus()
    try:
        pub = bus.create_publisher(TRANSCRIPT_PORT)
    except zmq.ZMQError as e:
        if "Address already in use" in str(e):
            print(f"ERROR: Port {TRANSCRIPT_PORT} in use. Stop speech_recognition first.")
            return 1
        raise

    # ZMQ slow-joiner: give the monitor time to connect.
    time.sleep(1.0)
    bus.publish(pub, TRANSCRIPT_TOPIC, payload)
    print("Published. The monitor should escalate to Scam within a second.")

    pub.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
