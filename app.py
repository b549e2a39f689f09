"""
FastAPI Web Application for Track Replay

This module provides a REST API over replay sessions: loading decoded tracks,
placing start/finish flags, synchronizing, recoloring by metric, probing
values under the pointer, driving playback and exporting track data.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple, Union
from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel
from trackreplay import analyze_tracks

logger = logging.getLogger(__name__)


# ============================================================================
# APPLICATION SETUP
# ============================================================================

app = FastAPI(title="Track Replay")


# ============================================================================
# REQUEST BODIES
# ============================================================================

class SampleIn(BaseModel):
    time: Union[float, str]
    lon: float
    lat: float
    alt: Optional[float] = None


class TrackUpload(BaseModel):
    name: Optional[str] = None
    samples: List[SampleIn]


class FlagDrop(BaseModel):
    lon: Optional[float] = None
    lat: Optional[float] = None
    alt: float = 0.0
    track_index: Optional[int] = None
    sample_index: Optional[int] = None


class SettingsUpdate(BaseModel):
    metric_mode: Optional[str] = None
    continuous_colors: Optional[bool] = None
    speed_units: Optional[str] = None
    legend_min: Optional[float] = None
    legend_max: Optional[float] = None


# ============================================================================
# SESSION LOADING & CACHING
# ============================================================================

# Live replay sessions (session id -> ReplaySession)
session_cache: Dict[str, analyze_tracks.ReplaySession] = {}

# One lock per session (session id -> Lock); a session runs one operation at a time
session_locks: Dict[str, threading.Lock] = {}
cache_lock = threading.Lock()

SESSION_QUERY = Query("default", description="Replay session id")


def get_session(session_id: str, create: bool = False) -> Tuple[analyze_tracks.ReplaySession, threading.Lock]:
    """
    Get the replay session for an id and the lock guarding it.

    Args:
        session_id: Session identifier chosen by the client.
        create: Create the session if it does not exist yet.

    Returns:
        Tuple of (ReplaySession, lock).

    Raises:
        HTTPException: If the session does not exist and create is False (status 404).
    """
    with cache_lock:
        if session_id not in session_cache:
            if not create:
                raise HTTPException(status_code=404, detail=f"Session {session_id!r} not found")
            logger.info("Creating replay session %r", session_id)
            session_cache[session_id] = analyze_tracks.ReplaySession()
            session_locks[session_id] = threading.Lock()
        return session_cache[session_id], session_locks[session_id]


@contextmanager
def locked_session(session_id: str, create: bool = False) -> Iterator[analyze_tracks.ReplaySession]:
    """Hold a session's lock for the duration of one request."""
    replay, lock = get_session(session_id, create)
    with lock:
        yield replay


def result_response(result: analyze_tracks.OperationResult) -> Dict:
    """
    Convert an operation result into a JSON response body.

    Raises:
        HTTPException: 404 for an unknown track, 400 for other failures.
    """
    if not result.ok:
        status = 404 if result.code == analyze_tracks.StatusCode.UNKNOWN_TRACK else 400
        raise HTTPException(status_code=status, detail={"code": result.code.value, "message": result.message})
    return {"code": result.code.value, "message": result.message, "data": result.data}


# ============================================================================
# API ROUTES - SESSION
# ============================================================================

@app.get("/api/sessions")
def list_sessions():
    """List the ids of live replay sessions."""
    with cache_lock:
        return sorted(session_cache)


@app.get("/api/session")
def get_session_payload(session: str = SESSION_QUERY):
    """
    Get the complete payload of a replay session.

    Returns settings, track summaries, flags, clock, colored segments,
    legend, marker positions and the last status.
    """
    with locked_session(session) as replay:
        return replay.build_payload()


@app.delete("/api/session")
def delete_session(session: str = SESSION_QUERY):
    """Discard a replay session and everything loaded into it."""
    with cache_lock:
        if session_cache.pop(session, None) is None:
            raise HTTPException(status_code=404, detail=f"Session {session!r} not found")
        session_locks.pop(session, None)
    return {"deleted": session}


# ============================================================================
# API ROUTES - TRACKS
# ============================================================================

@app.post("/api/tracks")
def upload_track(body: TrackUpload, session: str = SESSION_QUERY):
    """
    Load one decoded track into the session, creating the session on first use.

    The body carries samples already decoded by the client (time as ISO
    string or Unix milliseconds, lon/lat in degrees, optional altitude).
    """
    records = [sample.model_dump() for sample in body.samples]
    with locked_session(session, create=True) as replay:
        return result_response(replay.load_track(records, name=body.name))


@app.delete("/api/tracks/{index}")
def remove_track(index: int, session: str = SESSION_QUERY):
    with locked_session(session) as replay:
        return result_response(replay.remove_track(index))


@app.post("/api/tracks/densify")
def densify_tracks(session: str = SESSION_QUERY):
    """Interpolate every track that has not been interpolated yet."""
    with locked_session(session) as replay:
        return result_response(replay.densify_all())


@app.post("/api/tracks/{index}/visibility")
def set_visibility(index: int, visible: Optional[bool] = Query(None, description="Omit to toggle"),
                   session: str = SESSION_QUERY):
    with locked_session(session) as replay:
        return result_response(replay.set_visibility(index, visible))


@app.post("/api/tracks/{index}/elevation")
def set_elevation(index: int, meters: float = Query(..., description="Altitude offset in meters"),
                  session: str = SESSION_QUERY):
    with locked_session(session) as replay:
        return result_response(replay.set_elevation_offset(index, meters))


# ============================================================================
# API ROUTES - FLAGS & SYNC
# ============================================================================

@app.post("/api/flags/{kind}")
def place_flag(kind: analyze_tracks.FlagKind, body: FlagDrop, session: str = SESSION_QUERY):
    """
    Place the start or finish flag.

    Either a (track_index, sample_index) pair or a coordinate must be
    given; a coordinate snaps to the nearest track.
    """
    with locked_session(session) as replay:
        if body.track_index is not None and body.sample_index is not None:
            result = replay.place_flag(kind, body.track_index, body.sample_index)
        elif body.lon is not None and body.lat is not None:
            result = replay.drop_flag(kind, (body.lon, body.lat, body.alt))
        else:
            raise HTTPException(status_code=422, detail="Give a track/sample pair or a lon/lat coordinate")
        return result_response(result)


@app.delete("/api/flags")
def reset_flags(session: str = SESSION_QUERY):
    with locked_session(session) as replay:
        return result_response(replay.reset_flags())


@app.post("/api/sync")
def synchronize(session: str = SESSION_QUERY):
    """Synchronize all visible tracks to the current flags."""
    with locked_session(session) as replay:
        return result_response(replay.synchronize())


# ============================================================================
# API ROUTES - SETTINGS & METRICS
# ============================================================================

@app.get("/api/settings")
def get_settings(session: str = SESSION_QUERY):
    with locked_session(session) as replay:
        return replay.settings.to_dict()


@app.put("/api/settings")
def update_settings(body: SettingsUpdate, session: str = SESSION_QUERY):
    """
    Change metric mode, units, segment style or legend bounds.

    Metrics are recomputed after the change. A new session is created if
    needed so settings can be chosen before any track is loaded.
    """
    with locked_session(session, create=True) as replay:
        return result_response(replay.update_settings(**body.model_dump()))


@app.get("/api/segments")
def get_segments(session: str = SESSION_QUERY):
    """Colored GeoJSON segments for every track in the active metric mode."""
    with locked_session(session) as replay:
        return replay.colored_segments()


@app.get("/api/legend")
def get_legend(session: str = SESSION_QUERY):
    with locked_session(session) as replay:
        return replay.legend()


@app.get("/api/probe")
def probe(lon: float = Query(...), lat: float = Query(...), alt: float = Query(0.0),
          session: str = SESSION_QUERY):
    """Per-track metric value near a coordinate (tooltip data)."""
    with locked_session(session) as replay:
        return replay.probe((lon, lat, alt))


# ============================================================================
# API ROUTES - PLAYBACK
# ============================================================================

@app.get("/api/clock")
def get_clock(session: str = SESSION_QUERY):
    with locked_session(session) as replay:
        payload = replay.build_payload()
    return {**payload["clock"], "markers": payload["markers"]}


@app.post("/api/playback/play")
def play(session: str = SESSION_QUERY):
    with locked_session(session) as replay:
        return result_response(replay.play())


@app.post("/api/playback/stop")
def stop(session: str = SESSION_QUERY):
    with locked_session(session) as replay:
        return result_response(replay.stop())


@app.post("/api/playback/reset")
def reset(session: str = SESSION_QUERY):
    with locked_session(session) as replay:
        return result_response(replay.reset())


@app.post("/api/playback/seek")
def seek(position: float = Query(..., description="Percentage of the window (0-100)"),
         session: str = SESSION_QUERY):
    with locked_session(session) as replay:
        return result_response(replay.seek(position))


@app.post("/api/playback/speed")
def set_speed(multiplier: float = Query(..., description="Playback speed multiplier"),
              session: str = SESSION_QUERY):
    with locked_session(session) as replay:
        return result_response(replay.set_speed(multiplier))


@app.post("/api/playback/tick")
def tick(now: Optional[float] = Query(None, description="Client clock in milliseconds"),
         session: str = SESSION_QUERY):
    """
    Advance playback by one frame.

    Clients drive the animation by calling this once per rendered frame.
    """
    with locked_session(session) as replay:
        status = replay.tick(now)
        payload = replay.build_payload()
    return {"status": status.value, "clock": payload["clock"], "markers": payload["markers"]}


# ============================================================================
# API ROUTES - EXPORT
# ============================================================================

@app.get("/api/export/track/{index}")
def export_track(index: int, session: str = SESSION_QUERY):
    """
    Export one track's samples and metrics as CSV.

    Returns:
        PlainTextResponse: CSV file with Content-Disposition header
        for download. Filename: track_{index}.csv

    Raises:
        HTTPException: If the session or track index is not found (status 404).
    """
    with locked_session(session) as replay:
        if not 0 <= index < len(replay.tracks):
            raise HTTPException(status_code=404, detail=f"Track {index} not found")
        try:
            csv_body = analyze_tracks.export_track_csv(replay.tracks[index], replay.settings.speed_units)
        except ValueError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    headers = {"Content-Disposition": f"attachment; filename=track_{index}.csv"}
    return PlainTextResponse(
        csv_body,
        media_type="text/csv",
        headers=headers
    )


# ============================================================================
# RUN INSTRUCTIONS
# ============================================================================
# Run with: uvicorn app:app --reload
