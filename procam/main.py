import sys
import logging
import argparse

import cv2

from procam.camera import create_camera
from procam.commands import ConsoleCommandSource, KeyboardCommandSource
from procam.config import DEFAULT_CONFIG_FILE, load_config
from procam.exceptions import ProCamError
from procam.operations import CheckerboardOperations, load_operations
from procam.projector import ProjectorWindow
from procam.session import SessionController

logger = logging.getLogger("procam")


def build_parser():
    parser = argparse.ArgumentParser(
        prog="procam",
        description="Projector-camera calibration and structured-light capture session.",
    )
    parser.add_argument("config", nargs="?", default=DEFAULT_CONFIG_FILE, help="Rig configuration file (XML/YAML).")
    parser.add_argument(
        "--operations",
        default=None,
        help="Scan/calibration operations as module:Class (default: OpenCV checkerboard camera calibration).",
    )
    parser.add_argument("--console", action="store_true", help="Read commands from stdin instead of the projector window.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(name)s: %(message)s",
    )

    print("----------------------------------------------------------------")
    print("   Structured Lighting for 3D Scanning")
    print("----------------------------------------------------------------")

    commands = ConsoleCommandSource() if args.console else KeyboardCommandSource()
    controller = None
    try:
        config = load_config(args.config)
        operations = load_operations(args.operations) if args.operations else CheckerboardOperations()
        camera = create_camera(config)
        controller = SessionController(
            config,
            camera,
            ProjectorWindow.from_config(config),
            commands,
            operations,
            config_path=args.config,
        )
        controller.start()
        controller.run()
    except (ProCamError, cv2.error, ImportError, AttributeError, ValueError) as e:
        # Fatal startup error: the user must see it before the process ends
        logger.critical("%s", e)
        commands.acknowledge("Press any key to exit.")
        return 1
    finally:
        if controller is not None:
            controller.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
