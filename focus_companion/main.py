"""
============================================================
 Focus Companion — Main Entry Point
 Run: focus-companion   (or: python -m focus_companion.main)
============================================================
"""

import argparse
import logging

import uvicorn

from focus_companion import config, create_app
from focus_companion.ledger import Ledger
from focus_companion.session import SessionController


def main():
    parser = argparse.ArgumentParser(
        description="Focus Companion — webcam attention monitor + study companion"
    )
    parser.add_argument("--host", default=config.SERVER_HOST, help="Bind address")
    parser.add_argument("--port", type=int, default=config.SERVER_PORT, help="Bind port")
    parser.add_argument(
        "--camera", type=int, default=None,
        help="Camera index (default: config.CAMERA_INDEX)",
    )
    parser.add_argument(
        "--database", default=config.DATABASE_URI,
        help="SQLAlchemy URI of the distraction ledger",
    )
    parser.add_argument("--log-level", default=config.LOG_LEVEL, help="DEBUG, INFO, WARNING...")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )
    if args.camera is not None:
        config.CAMERA_INDEX = args.camera

    print(r"""
    ╔═══════════════════════════════════════════════════════╗
    ║                                                       ║
    ║              F O C U S   C O M P A N I O N            ║
    ║                                                       ║
    ║   Webcam attention monitor + study companion          ║
    ╚═══════════════════════════════════════════════════════╝
    """)
    print(f"  🌐 API:        http://{args.host}:{args.port}")
    print(f"  📷 Camera:     Source {config.CAMERA_INDEX}")
    print("  🧠 Models:     MediaPipe Face/Hand Landmarker + YOLO")
    print(f"  🔊 Voice:      {'OpenAI TTS' if config.OPENAI_API_KEY else 'local (pyttsx3)'}")
    print(f"  💾 Database:   {args.database}")
    print()

    controller = SessionController(ledger=Ledger(args.database))
    uvicorn.run(
        create_app(controller),
        host=args.host,
        port=args.port,
        log_level=args.log_level.lower(),
    )


if __name__ == "__main__":
    main()
