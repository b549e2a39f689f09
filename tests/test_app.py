from __future__ import annotations

import threading
import uuid

import pandas as pd
from fastapi.testclient import TestClient

from app import app, session_cache

client = TestClient(app)


def _samples(offset_s: float, n: int = 20) -> list[dict]:
    start = pd.Timestamp("2024-05-01T10:00:00Z") + pd.Timedelta(seconds=offset_s)
    return [
        {
            "time": (start + pd.Timedelta(seconds=i)).isoformat(),
            "lon": 8.0,
            "lat": 47.0 + i * 0.0001,
            "alt": 400.0,
        }
        for i in range(n)
    ]


def _new_session() -> str:
    session_id = f"test_{uuid.uuid4().hex}"
    for offset in (0, 30):
        res = client.post(
            "/api/tracks",
            params={"session": session_id},
            json={"name": f"run {offset}", "samples": _samples(offset)},
        )
        assert res.status_code == 200, res.text
    return session_id


def test_upload_and_payload() -> None:
    session_id = _new_session()

    res = client.get("/api/session", params={"session": session_id})
    assert res.status_code == 200
    payload = res.json()
    assert [t["name"] for t in payload["tracks"]] == ["run 0", "run 30"]
    assert payload["tracks"][1]["synced"]
    assert session_id in client.get("/api/sessions").json()


def test_upload_rejects_unusable_track() -> None:
    session_id = f"test_{uuid.uuid4().hex}"
    res = client.post(
        "/api/tracks",
        params={"session": session_id},
        json={"samples": [{"time": "nonsense", "lon": 1.0, "lat": 2.0}]},
    )
    assert res.status_code == 400
    assert res.json()["detail"]["code"] == "parse_error"


def test_unknown_track_is_404() -> None:
    session_id = _new_session()
    assert client.delete("/api/tracks/9", params={"session": session_id}).status_code == 404
    assert client.get("/api/export/track/9", params={"session": session_id}).status_code == 404


def test_settings_segments_and_legend() -> None:
    session_id = _new_session()

    res = client.put(
        "/api/settings",
        params={"session": session_id},
        json={"metric_mode": "timeDifference", "continuous_colors": False},
    )
    assert res.status_code == 200, res.text
    assert res.json()["code"] == "metrics_updated"

    settings = client.get("/api/settings", params={"session": session_id}).json()
    assert settings["metricMode"] == "timeDifference"
    assert settings["legendMax"] == 10.0

    layers = client.get("/api/segments", params={"session": session_id}).json()
    assert len(layers) == 2
    assert layers[0]["features"]["features"][0]["properties"]["stroke"] == "#ffffff"

    legend = client.get("/api/legend", params={"session": session_id}).json()
    assert legend["continuous"] is False

    bad = client.put("/api/settings", params={"session": session_id}, json={"metric_mode": "jerk"})
    assert bad.status_code == 400


def test_flags_and_sync() -> None:
    session_id = _new_session()

    res = client.post(
        "/api/flags/start",
        params={"session": session_id},
        json={"track_index": 1, "sample_index": 4},
    )
    assert res.status_code == 200, res.text

    res = client.post("/api/flags/finish", params={"session": session_id}, json={"lon": 8.0, "lat": 47.0015, "alt": 400.0})
    assert res.status_code == 200, res.text

    res = client.post("/api/flags/finish", params={"session": session_id}, json={})
    assert res.status_code == 422

    res = client.post("/api/sync", params={"session": session_id})
    assert res.json()["data"]["referenceTrack"] == 1

    flags = client.get("/api/session", params={"session": session_id}).json()["flags"]
    assert flags["start"]["trackIndex"] == 1

    assert client.delete("/api/flags", params={"session": session_id}).status_code == 200


def test_probe() -> None:
    session_id = _new_session()
    rows = client.get(
        "/api/probe", params={"session": session_id, "lon": 8.0, "lat": 47.0005}
    ).json()
    assert len(rows) == 2
    assert rows[0]["sampleIndex"] == 5


def test_playback_controls() -> None:
    session_id = _new_session()
    params = {"session": session_id}

    assert client.post("/api/playback/play", params=params).json()["code"] == "animation_started"
    tick = client.post("/api/playback/tick", params=params).json()
    assert tick["status"] == "playing"
    assert set(tick["markers"]) == {"0", "1"}

    assert client.post("/api/playback/stop", params=params).status_code == 200
    assert client.post("/api/playback/seek", params={**params, "position": 50}).status_code == 200
    clock = client.get("/api/clock", params=params).json()
    assert clock["position"] == 50.0
    assert client.post("/api/playback/speed", params={**params, "multiplier": 0}).status_code == 400
    assert client.post("/api/playback/reset", params=params).status_code == 200


def test_track_edits_and_export() -> None:
    session_id = _new_session()
    params = {"session": session_id}

    assert client.post("/api/tracks/1/elevation", params={**params, "meters": 3}).status_code == 200
    res = client.post("/api/tracks/1/visibility", params={**params, "visible": False})
    assert res.json()["data"] == {"visible": False}
    assert client.post("/api/tracks/densify", params=params).json()["data"] == {"count": 2}
    assert client.post("/api/tracks/densify", params=params).status_code == 400

    res = client.get("/api/export/track/0", params=params)
    assert res.status_code == 200
    assert res.headers["content-type"].startswith("text/csv")
    assert "attachment; filename=track_0.csv" == res.headers["content-disposition"]
    assert len(res.text.strip().splitlines()) == 1 + 20 + 19 * 5


def test_delete_session() -> None:
    session_id = _new_session()
    assert client.delete("/api/session", params={"session": session_id}).status_code == 200
    assert session_id not in session_cache
    assert client.delete("/api/session", params={"session": session_id}).status_code == 404


def test_reads_do_not_create_sessions() -> None:
    session_id = f"test_{uuid.uuid4().hex}"
    for path in ("/api/session", "/api/legend", "/api/clock", "/api/segments", "/api/settings"):
        assert client.get(path, params={"session": session_id}).status_code == 404
    assert client.post("/api/playback/tick", params={"session": session_id}).status_code == 404
    assert session_id not in session_cache


def test_ticks_do_not_overlap_track_edits() -> None:
    session_id = f"test_{uuid.uuid4().hex}"
    params = {"session": session_id}
    for offset in (0, 30):
        res = client.post("/api/tracks", params=params, json={"name": f"long {offset}", "samples": _samples(offset, 400)})
        assert res.status_code == 200, res.text
    client.post("/api/playback/play", params=params)

    errors: list[Exception] = []
    done = threading.Event()

    def keep_ticking() -> None:
        while not done.is_set():
            try:
                res = client.post("/api/playback/tick", params=params)
                assert res.status_code == 200, res.text
            except Exception as exc:
                errors.append(exc)
                return

    workers = [threading.Thread(target=keep_ticking) for _ in range(3)]
    for worker in workers:
        worker.start()
    try:
        for k in range(40):
            assert client.post(f"/api/tracks/{k % 2}/elevation", params={**params, "meters": k}).status_code == 200
            client.post("/api/playback/play", params=params)
    finally:
        done.set()
        for worker in workers:
            worker.join()

    assert errors == []
