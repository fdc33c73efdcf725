import logging

import numpy as np
import pytest

from procam.calibration import CalibrationStore
from procam.commands import Command, ScriptedCommandSource, format_menu
from procam.exceptions import OutputDirectoryUnavailable
from procam.operations import SUCCESS, ProCamOperations
from procam.session import SessionController, SessionState, clear_directory

from conftest import FakeCamera, FakeProjector, SimulatedOperations


def make_controller(config, keys, operations=None, camera=None):
    return SessionController(
        config,
        camera or FakeCamera(),
        FakeProjector(),
        ScriptedCommandSource(keys),
        operations or SimulatedOperations(),
    )


def run_session(config, keys, operations=None, camera=None):
    controller = make_controller(config, keys, operations, camera)
    controller.start()
    try:
        controller.run()
    finally:
        controller.shutdown()
    return controller


def test_start_enters_awaiting_command_with_reset_background(rig_config):
    controller = make_controller(rig_config, [])
    controller.start()
    assert controller.state is SessionState.AWAITING_COMMAND
    assert controller.background.is_reset()
    assert controller.context.camera.calls[:2] == ["start_capture", "query_frame"]
    assert controller.context.projector.calls[0] == "open"


def test_calibration_scenario_persists_and_reloads(rig_config):
    controller = run_session(rig_config, ["c", "p", "e", Command.EXIT])

    store = controller.calibration
    assert store.cam_intrinsic_calibrated
    assert store.proj_intrinsic_calibrated
    assert store.procam_extrinsic_calibrated
    assert store.is_ready_to_scan()
    assert controller.state is SessionState.TERMINATING

    reloaded = CalibrationStore(rig_config.camera_size, rig_config.projector_size)
    assert reloaded.try_load_all(rig_config.output_directory) == (True, True, True)


def test_fresh_directory_starts_uncalibrated(rig_config):
    controller = make_controller(rig_config, [])
    controller.start()
    store = controller.calibration
    assert not (store.cam_intrinsic_calibrated or store.proj_intrinsic_calibrated or store.procam_extrinsic_calibrated)


def test_calibrate_both_sets_both_intrinsics(rig_config):
    controller = run_session(rig_config, ["a"])
    assert controller.calibration.cam_intrinsic_calibrated
    assert controller.calibration.proj_intrinsic_calibrated
    assert not controller.calibration.procam_extrinsic_calibrated


def test_scan_is_gated_until_alignment(rig_config, caplog):
    operations = SimulatedOperations()
    with caplog.at_level(logging.INFO):
        controller = run_session(rig_config, ["s"], operations)
    assert operations.calls == []
    assert controller.scan_index == 0
    assert "scanning is disabled" in caplog.text


def test_scan_view_index_increments(rig_config):
    operations = SimulatedOperations()
    controller = run_session(rig_config, ["a", "e", "s", "s", "s"], operations)
    assert [c for c in operations.calls if isinstance(c, tuple)] == [("scan", 1), ("scan", 2), ("scan", 3)]
    assert controller.scan_index == 3


def test_failed_alignment_keeps_lattice(rig_config, caplog):
    operations = SimulatedOperations(fail={"extrinsic"})
    with caplog.at_level(logging.WARNING):
        controller = run_session(rig_config, ["c", "e"], operations)
    store = controller.calibration
    assert store.cam_intrinsic_calibrated
    assert not store.procam_extrinsic_calibrated
    assert "status 1" in caplog.text


def test_alignment_without_intrinsics_is_reported_not_fatal(rig_config, caplog):
    # The simulated operation tries to set extrinsics without intrinsics
    with caplog.at_level(logging.ERROR):
        controller = run_session(rig_config, ["e", "c"])
    assert not controller.calibration.procam_extrinsic_calibrated
    assert controller.calibration.cam_intrinsic_calibrated
    assert "calibrate alignment failed" in caplog.text


def test_unrecognized_input_keeps_waiting(rig_config):
    operations = SimulatedOperations()
    controller = run_session(rig_config, ["z", "?", "c"], operations)
    assert operations.calls == ["camera"]
    # Idle pattern redrawn before every read: three keys plus the final exit
    assert controller.context.projector.calls.count("show_idle") == 4


def test_menu_is_shown_before_every_read(rig_config, capsys):
    run_session(rig_config, ["z", "r"])
    # Unrecognised key, background reset, then the final exit
    assert capsys.readouterr().out.count(format_menu()) == 3


def test_background_reset_clears_stale_capture(rig_config):
    controller = make_controller(rig_config, [])
    controller.start()
    controller.dispatch(Command.CALIBRATE_BOTH)
    controller.dispatch(Command.CALIBRATE_ALIGNMENT)
    controller.dispatch(Command.BACKGROUND_CAPTURE)
    assert np.isfinite(controller.background.depth_map).all()

    controller.dispatch(Command.BACKGROUND_RESET)

    assert not np.isfinite(controller.background.depth_map).any()
    assert controller.background.is_reset()
    assert controller.state is SessionState.AWAITING_COMMAND


def test_background_capture_resets_before_capturing(rig_config):
    operations = SimulatedOperations()
    controller = make_controller(rig_config, [], operations)
    controller.start()
    controller.dispatch(Command.CALIBRATE_BOTH)
    controller.dispatch(Command.CALIBRATE_ALIGNMENT)
    controller.dispatch(Command.BACKGROUND_CAPTURE)

    operations.fail.add("background")
    controller.dispatch(Command.BACKGROUND_CAPTURE)

    depth = controller.background.depth_map
    # Only the partial sample of the failed capture survives, nothing from the first one
    assert depth[0, 0] == 123.0
    assert np.isposinf(depth.ravel()[1:]).all()


def test_exit_persists_and_runs_device_shutdown(rig_config):
    camera = FakeCamera()
    run_session(rig_config, ["c"], camera=camera)
    assert camera.calls[-2:] == ["on_exit", "end_capture"]

    reloaded = CalibrationStore(rig_config.camera_size, rig_config.projector_size)
    assert reloaded.try_load_all(rig_config.output_directory) == (True, False, False)


def test_exit_writes_configuration_back(rig_config, tmp_path):
    path = tmp_path / "config.yml"
    controller = SessionController(
        rig_config, FakeCamera(), FakeProjector(), ScriptedCommandSource([]), ProCamOperations(), config_path=str(path)
    )
    controller.start()
    controller.run()
    assert path.exists()


def test_end_capture_failure_does_not_block_release(rig_config, caplog):
    camera = FakeCamera(fail_on_end=True)
    with caplog.at_level(logging.ERROR):
        controller = run_session(rig_config, [], camera=camera)
    assert controller.context.projector.calls[-1] == "close"
    assert "end_capture failed" in caplog.text


def test_shutdown_releases_camera_once(rig_config):
    camera = FakeCamera()
    controller = run_session(rig_config, [], camera=camera)
    controller.shutdown()
    assert camera.calls.count("end_capture") == 1


def test_default_operations_are_unsupported(rig_config):
    controller = make_controller(rig_config, [], ProCamOperations())
    controller.start()
    assert controller.dispatch(Command.CALIBRATE_CAMERA) != SUCCESS
    assert controller.dispatch(Command.BACKGROUND_RESET) == SUCCESS


def test_start_clears_previous_object_data(rig_config, tmp_path):
    stale = tmp_path / "output" / "demo" / "view_01"
    stale.mkdir(parents=True)
    (stale / "old.ply").write_text("ply")
    calib = tmp_path / "output" / "calib"
    calib.mkdir(parents=True)

    make_controller(rig_config, []).start()

    assert list((tmp_path / "output" / "demo").iterdir()) == []
    assert calib.exists()


def test_clear_directory_reports_unavailable_output(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")
    with pytest.raises(OutputDirectoryUnavailable):
        clear_directory(str(blocker / "object"))


def test_context_foreground_uses_configured_threshold(rig_config):
    rig_config.background_depth_thresh = 50.0
    controller = make_controller(rig_config, [])
    controller.start()
    controller.background.depth_map[:] = 300.0

    depth = np.full(controller.background.depth_map.shape, 260.0)
    assert not controller.context.foreground(depth).any()
    depth[0, 0] = 200.0
    assert controller.context.foreground(depth).sum() == 1
