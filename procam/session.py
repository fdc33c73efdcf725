"""Command loop sequencing calibration and capture for one scanning session."""
import os
import enum
import shutil
import logging
from dataclasses import dataclass

from procam.background import BackgroundModel
from procam.calibration import CalibrationStore
from procam.commands import Command, format_menu
from procam.config import save_config
from procam.exceptions import CameraError, OutputDirectoryUnavailable
from procam.operations import SUCCESS

logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    AWAITING_COMMAND = "awaiting_command"
    DISPATCHING = "dispatching"
    TERMINATING = "terminating"


@dataclass
class SessionContext:
    # Everything an operation may read or mutate, passed by reference
    config: object
    camera: object
    projector: object
    commands: object
    calibration: CalibrationStore
    background: BackgroundModel

    @property
    def output_dir(self):
        return self.config.output_directory

    @property
    def object_dir(self):
        return self.config.object_directory

    def foreground(self, depth_map):
        # Foreground mask of a scanned depth map using the configured threshold
        return self.background.foreground(depth_map, self.config.background_depth_thresh)


def clear_directory(path):
    # Create ``path`` if needed and delete everything inside it
    try:
        os.makedirs(path, exist_ok=True)
        for entry in os.scandir(path):
            if entry.is_dir(follow_symlinks=False):
                shutil.rmtree(entry.path)
            else:
                os.unlink(entry.path)
    except OSError as e:
        raise OutputDirectoryUnavailable(f"Cannot open output directory \"{path}\": {e}") from e


class SessionController:
    """Reads one command at a time and dispatches it until the user exits.

    ``start`` brings the rig up (camera capture, projector surface, output
    directory, stored calibration, background); ``run`` is the blocking
    loop; ``shutdown`` releases the camera and the projector exactly once.
    """

    def __init__(self, config, camera, projector, commands, operations, config_path=None):
        self.operations = operations
        self.config_path = config_path
        self.context = SessionContext(
            config=config,
            camera=camera,
            projector=projector,
            commands=commands,
            calibration=CalibrationStore(config.camera_size, config.projector_size),
            background=BackgroundModel(config.camera_width, config.camera_height),
        )
        self.state = SessionState.AWAITING_COMMAND
        self.scan_index = 0
        self.capturing = False

    @property
    def calibration(self):
        return self.context.calibration

    @property
    def background(self):
        return self.context.background

    # ---------------------------------------------------------
    # Startup / shutdown
    # ---------------------------------------------------------
    def start(self):
        ctx = self.context

        # Camera capture brackets the whole session
        ctx.camera.start_capture()
        self.capturing = True
        if ctx.camera.query_frame() is None:
            raise CameraError("No frame was available")

        ctx.projector.open()

        logger.info("Creating output directory (overwrites existing object data)...")
        clear_directory(ctx.object_dir)

        ctx.calibration.try_load_all(ctx.output_dir)
        if not ctx.calibration.is_ready_to_scan():
            logger.info("Scanning is disabled until projector-camera alignment is calibrated.")

        ctx.background.reset()
        self.state = SessionState.AWAITING_COMMAND

    def shutdown(self):
        ctx = self.context
        if self.capturing:
            self.capturing = False
            try:
                ctx.camera.end_capture()
            except CameraError as e:
                # Reported only; the projector must still be released
                logger.error("camera end_capture failed: %s", e)
        ctx.projector.close()

    # ---------------------------------------------------------
    # Command loop
    # ---------------------------------------------------------
    def run(self):
        while self.state is not SessionState.TERMINATING:
            # Neutral projector pattern while waiting for input
            self.context.projector.show_idle()
            print(format_menu())

            command = self.context.commands.read()
            if command is None:
                # Unrecognised key: stay put and show the menu again
                continue

            self.dispatch(command)
        return self.scan_index

    def dispatch(self, command):
        self.state = SessionState.DISPATCHING
        handler = self._handlers()[command]
        try:
            status = handler()
        except Exception:
            logger.exception("%s failed", command.name.lower().replace("_", " "))
            status = None

        if status not in (None, SUCCESS):
            logger.warning("%s finished with status %s", command.name.lower().replace("_", " "), status)

        if self.state is SessionState.DISPATCHING:
            self.state = SessionState.AWAITING_COMMAND
        return status

    def _handlers(self):
        return {
            Command.SCAN: self.scan,
            Command.BACKGROUND_CAPTURE: self.capture_background,
            Command.BACKGROUND_RESET: self.reset_background,
            Command.CALIBRATE_CAMERA: self.calibrate_camera,
            Command.CALIBRATE_PROJECTOR: self.calibrate_projector,
            Command.CALIBRATE_BOTH: self.calibrate_both,
            Command.CALIBRATE_ALIGNMENT: self.calibrate_alignment,
            Command.EXIT: self.exit,
        }

    # ---------------------------------------------------------
    # Transitions
    # ---------------------------------------------------------
    def scan(self):
        if not self._ready_to_scan():
            return None
        self.scan_index += 1
        logger.info("Running scanner (view %d)...", self.scan_index)
        return self.operations.run_structured_light(self.context, self.scan_index)

    def capture_background(self):
        if not self._ready_to_scan():
            return None
        logger.info("Scanning background...")
        return self.background.capture_via(
            lambda depth, color, mask: self.operations.run_background_capture(self.context, depth, color, mask)
        )

    def reset_background(self):
        logger.info("Resetting background...")
        self.background.reset()
        return SUCCESS

    def calibrate_camera(self):
        logger.info("Calibrating camera...")
        return self.operations.run_camera_calibration(self.context)

    def calibrate_projector(self):
        logger.info("Calibrating projector...")
        return self.operations.run_projector_calibration(self.context, False)

    def calibrate_both(self):
        logger.info("Calibrating camera and projector simultaneously...")
        return self.operations.run_projector_calibration(self.context, True)

    def calibrate_alignment(self):
        logger.info("Calibrating projector-camera alignment...")
        return self.operations.run_procam_extrinsic_calibration(self.context)

    def exit(self):
        ctx = self.context
        self.state = SessionState.TERMINATING
        try:
            ctx.calibration.persist_all(ctx.output_dir)
        except OSError as e:
            logger.error("Could not save calibration: %s", e)
        if self.config_path:
            logger.info("Writing configuration file \"%s\"...", self.config_path)
            try:
                save_config(self.config_path, ctx.config)
            except OSError as e:
                logger.error("Could not write configuration file: %s", e)
        ctx.camera.on_exit()
        logger.info("Exiting application...")
        return SUCCESS

    def _ready_to_scan(self):
        if self.calibration.is_ready_to_scan():
            return True
        logger.info("Projector-camera system has not been extrinsically calibrated; scanning is disabled.")
        return False
