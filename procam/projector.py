import logging

import cv2
import numpy as np

logger = logging.getLogger(__name__)

WINDOW_NAME = "Projector"


class ProjectorWindow:
    # Undecorated OpenCV window sized to the projector and placed on its display

    def __init__(self, width, height, offset_x=0, offset_y=0, idle_value=255, window_name=WINDOW_NAME):
        self.width = width
        self.height = height
        self.offset_x = offset_x
        self.offset_y = offset_y
        self.idle_value = idle_value
        self.window_name = window_name
        self.is_open = False

    @classmethod
    def from_config(cls, config):
        return cls(
            config.projector_width,
            config.projector_height,
            config.projector_offset_x,
            config.projector_offset_y,
            config.projector_idle_value,
        )

    def idle_pattern(self):
        # Uniform neutral frame shown whenever no scan is running
        return np.full((self.height, self.width, 3), self.idle_value, dtype=np.uint8)

    def open(self):
        cv2.namedWindow(self.window_name, cv2.WINDOW_NORMAL)
        # Move the window onto the projector before going fullscreen on it
        cv2.moveWindow(self.window_name, self.offset_x, self.offset_y)
        cv2.setWindowProperty(self.window_name, cv2.WND_PROP_FULLSCREEN, cv2.WINDOW_FULLSCREEN)
        self.is_open = True
        self.show_idle()

    def show(self, image, wait_ms=1):
        if not self.is_open:
            self.open()
        if image.shape[:2] != (self.height, self.width):
            image = cv2.resize(image, (self.width, self.height), interpolation=cv2.INTER_NEAREST)
        cv2.imshow(self.window_name, image)
        # Give HighGUI a chance to draw the frame
        cv2.waitKey(wait_ms)

    def show_idle(self):
        self.show(self.idle_pattern())

    def close(self):
        if self.is_open:
            cv2.destroyWindow(self.window_name)
            self.is_open = False
