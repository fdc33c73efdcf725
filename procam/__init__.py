from procam import kinect
from procam.background import BackgroundModel
from procam.calibration import CalibrationParameters, CalibrationStore
from procam.commands import Command
from procam.geometry import intersect_rays_with_planes
from procam.session import SessionContext, SessionController

__all__ = [
    "BackgroundModel",
    "CalibrationParameters",
    "CalibrationStore",
    "Command",
    "SessionContext",
    "SessionController",
    # Used by scan operations to triangulate and texture point clouds
    "intersect_rays_with_planes",
    "kinect",
]
