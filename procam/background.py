import logging

import numpy as np

logger = logging.getLogger(__name__)

# Mask value of a pixel that is not (yet) known to be background
MASK_VISIBLE = 255


class BackgroundModel:
    # Reference depth, colour and validity mask used to separate the scanned
    # object from the scene behind it. Buffers are reused in place so that
    # references handed to a capture operation stay valid after a reset.

    def __init__(self, width, height):
        self.width = width
        self.height = height
        self.depth_map = np.empty((height, width), dtype=np.float32)
        self.color_image = np.empty((height, width, 3), dtype=np.uint8)
        self.mask = np.empty((height, width), dtype=np.uint8)
        self.reset()

    def reset(self):
        # +inf depth: no background measurement at this pixel
        self.depth_map.fill(np.inf)
        self.color_image.fill(0)
        self.mask.fill(MASK_VISIBLE)

    def is_reset(self):
        return bool(
            np.all(np.isposinf(self.depth_map))
            and not self.color_image.any()
            and np.all(self.mask == MASK_VISIBLE)
        )

    def capture_via(self, capture_op):
        """Reset, then let ``capture_op`` fill the three buffers.

        ``capture_op(depth_map, color_image, mask)`` mutates the arrays in place
        and returns its completion status (0 on success).
        """
        self.reset()
        return capture_op(self.depth_map, self.color_image, self.mask)

    def foreground(self, depth_map, threshold):
        """Boolean mask of pixels in ``depth_map`` that lie in front of the background.

        A pixel is foreground when it is not masked out and is closer than the
        background by more than ``threshold``. Pixels without a background
        sample always qualify.
        """
        depth = np.asarray(depth_map, dtype=np.float32)
        if depth.shape != self.depth_map.shape:
            raise ValueError(f"depth map must have shape {self.depth_map.shape}, got {depth.shape}")

        with np.errstate(invalid="ignore"):
            closer = depth < (self.depth_map - threshold)
        return closer & (self.mask != 0) & np.isfinite(depth)
