import io
import threading

import pytest

from procam.server import DISCONNECT_AFTER, CaptureState, create_app


@pytest.fixture
def state():
    return CaptureState()


@pytest.fixture
def client(state):
    app = create_app(state)
    app.config["TESTING"] = True
    return app.test_client()


def test_poll_reports_idle_and_marks_phone_connected(client, state):
    data = client.get("/poll_command").get_json()
    assert data == {"action": "idle", "id": ""}
    assert state.connected


def test_capture_request_is_visible_to_the_phone(client, state, tmp_path):
    state.request_capture(str(tmp_path / "01.png"))
    data = client.get("/poll_command").get_json()
    assert data["action"] == "capture"
    assert data["id"] == state.command_id


def test_upload_saves_the_pending_picture(client, state, tmp_path):
    target = tmp_path / "frames" / "01.png"
    state.request_capture(str(target))

    resp = client.post("/upload", data={"file": (io.BytesIO(b"png-bytes"), "photo.png")})

    assert resp.status_code == 200
    assert target.read_bytes() == b"png-bytes"
    assert state.wait_for_upload(timeout=0.1)
    assert state.command == "idle"


def test_upload_without_file_is_rejected(client):
    assert client.post("/upload", data={}).status_code == 400


def test_upload_without_pending_capture_is_rejected(client):
    resp = client.post("/upload", data={"file": (io.BytesIO(b"x"), "photo.png")})
    assert resp.status_code == 409


def test_wait_times_out_without_upload(state, tmp_path):
    state.request_capture(str(tmp_path / "01.png"))
    assert not state.wait_for_upload(timeout=0.01)
    assert state.command == "idle"


def test_stale_phone_is_disconnected(state):
    state.connected = True
    state.last_seen = 100.0
    assert state.check_disconnect(now=100.0 + DISCONNECT_AFTER / 2)
    assert not state.check_disconnect(now=100.0 + DISCONNECT_AFTER + 1)


def test_upload_wakes_a_waiting_capture(client, state, tmp_path):
    state.request_capture(str(tmp_path / "02.png"))
    result = {}
    waiter = threading.Thread(target=lambda: result.setdefault("ok", state.wait_for_upload(timeout=5)))
    waiter.start()
    client.post("/upload", data={"file": (io.BytesIO(b"y"), "photo.png")})
    waiter.join(timeout=5)
    assert result["ok"]
