class ProCamError(Exception):
    # Root of every error raised by the projector-camera session
    pass


class ConfigurationError(ProCamError):
    # Startup configuration file is missing, unreadable or inconsistent
    pass


class CameraError(ProCamError):
    # Camera backend could not be initialised, started or queried
    pass


class OutputDirectoryUnavailable(ProCamError):
    # Session output directory could not be created or cleared
    pass


class CalibrationStateError(ProCamError, ValueError):
    # A flag change would break the calibration dependency lattice
    pass
