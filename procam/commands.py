import enum
import logging

import cv2

from procam.projector import WINDOW_NAME

logger = logging.getLogger(__name__)

ESC = 27


class Command(enum.Enum):
    SCAN = "s"
    BACKGROUND_CAPTURE = "b"
    BACKGROUND_RESET = "r"
    CALIBRATE_CAMERA = "c"
    CALIBRATE_PROJECTOR = "p"
    CALIBRATE_BOTH = "a"
    CALIBRATE_ALIGNMENT = "e"
    EXIT = "\x1b"

    @classmethod
    def from_key(cls, key):
        # Map a key code or character to a command; None when unrecognised
        if isinstance(key, int):
            if key < 0:
                return None
            key = chr(key & 0xFF)
        if not key:
            return None
        key = key.strip().lower() or key
        if key in ("esc", "exit", "quit"):
            return cls.EXIT
        try:
            return cls(key[:1])
        except ValueError:
            return None


# Menu shown before each keystroke, in display order
MENU = (
    (Command.SCAN, "'S': Run scanner"),
    (Command.BACKGROUND_CAPTURE, "'B': Estimate background"),
    (Command.BACKGROUND_RESET, "'R': Reset background"),
    (Command.CALIBRATE_CAMERA, "'C': Calibrate camera"),
    (Command.CALIBRATE_PROJECTOR, "'P': Calibrate projector"),
    (Command.CALIBRATE_BOTH, "'A': Calibrate camera and projector simultaneously"),
    (Command.CALIBRATE_ALIGNMENT, "'E': Calibrate projector-camera alignment"),
    (Command.EXIT, "'ESC': Exit application"),
)


def format_menu():
    lines = ["", "Press the following keys for the corresponding functions."]
    lines += [text for _, text in MENU]
    return "\n".join(lines)


class CommandSource:
    # Where the session reads its next command from

    def read(self):
        """Block until a key arrives; return a Command or None if unrecognised."""
        raise NotImplementedError

    def acknowledge(self, message):
        # Block until the user confirms a fatal diagnostic
        raise NotImplementedError


class KeyboardCommandSource(CommandSource):
    # Single keystrokes delivered to the focused OpenCV window

    def __init__(self, window_name=WINDOW_NAME):
        self.window_name = window_name

    def read(self):
        key = cv2.waitKey(0)
        return Command.from_key(key)

    def window_open(self):
        try:
            return cv2.getWindowProperty(self.window_name, cv2.WND_PROP_VISIBLE) >= 1
        except cv2.error:
            # Missing window or a build without HighGUI
            return False

    def acknowledge(self, message):
        # waitKey returns at once when no window has focus, so fall back to stdin
        if self.window_open():
            print(message)
            cv2.waitKey(0)
            return
        try:
            input(message)
        except EOFError:
            pass


class ConsoleCommandSource(CommandSource):
    # One command per line on stdin ("esc", "exit" or "quit" to leave)

    def __init__(self, prompt="> "):
        self.prompt = prompt

    def read(self):
        try:
            line = input(self.prompt)
        except EOFError:
            # Closed input ends the session the same way ESC does
            return Command.EXIT
        return Command.from_key(line)

    def acknowledge(self, message):
        try:
            input(message)
        except EOFError:
            pass


class ScriptedCommandSource(CommandSource):
    # Replays a fixed key sequence, then exits

    def __init__(self, keys):
        self.keys = list(keys)
        self.acknowledged = []

    def read(self):
        if not self.keys:
            return Command.EXIT
        key = self.keys.pop(0)
        if isinstance(key, Command):
            return key
        return Command.from_key(key)

    def acknowledge(self, message):
        self.acknowledged.append(message)
