# Main FastAPI Application - Posture Feedback Service
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, ValidationError

from posture_feedback import analyzer
from posture_feedback import config
from posture_feedback import logger
from posture_feedback import sessions
from posture_feedback.models import (
    Classification,
    Keypoint,
    NotificationSettings,
    PostureSample,
    SideSelection,
    Thresholds,
    UserProfile,
    apply_partial,
)

# Initialize FastAPI
app = FastAPI(
    title="Posture Feedback API",
    description="Turns pose keypoints into rate-limited posture feedback",
    version="1.0.0"
)


# ============================================================================
# PYDANTIC MODELS
# ============================================================================

class StartSessionRequest(BaseModel):
    side_selection: SideSelection = SideSelection.AUTO
    thresholds: Optional[Thresholds] = None
    profile: Optional[Dict[str, Any]] = None     # partial, merged over defaults
    settings: Optional[Dict[str, Any]] = None    # partial, merged over defaults


class FrameRequest(BaseModel):
    keypoints: Optional[List[Keypoint]] = None
    landmarks: Optional[List[Optional[Dict[str, float]]]] = None  # 33-point pose list
    timestamp: Optional[float] = None


class SampleRequest(BaseModel):
    angle: float = 0.0
    classification: Classification = Classification.NORMAL
    confidence: float = 0.0
    side: SideSelection = SideSelection.AUTO
    timestamp: Optional[float] = None
    unmeasurable_reason: Optional[str] = None


class DetectionRequest(BaseModel):
    side_selection: Optional[SideSelection] = None
    mild: Optional[float] = None
    severe: Optional[float] = None


class SnoozeRequest(BaseModel):
    minutes: float = config.SNOOZE_ACTION_MINUTES


# ============================================================================
# HELPERS
# ============================================================================

def require_session(session_id: str) -> sessions.MonitoringSession:
    session = sessions.get_session(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


def frame_result(session: sessions.MonitoringSession, result: Dict[str, Any]) -> Dict[str, Any]:
    message = result["message"]
    return {
        "session_id": session.session_id,
        "active": session.is_active,
        "sample": result["sample"].model_dump(mode="json"),
        "message": message.model_dump(mode="json") if message else None,
        "level": session.engine.state.current_level.value
    }


# ============================================================================
# STARTUP/SHUTDOWN EVENTS
# ============================================================================

@app.on_event("startup")
async def startup_event():
    logger.log_lifecycle("STARTUP", "Initializing Posture Feedback Service")
    logger.log_success("Service Ready", {
        "audio_channel": config.ENABLE_AUDIO_CHANNEL,
        "system_channel": config.ENABLE_SYSTEM_CHANNEL,
        "haptic_channel": config.ENABLE_HAPTIC_CHANNEL,
        "log_level": config.LOG_LEVEL
    })


@app.on_event("shutdown")
async def shutdown_event():
    """Stop every running session so no timer outlives the server"""
    logger.log_lifecycle("SHUTDOWN", "Stopping all sessions")
    try:
        stopped = await sessions.stop_all()
        logger.log_success("Sessions Stopped", {"count": stopped})
    except Exception as e:
        logger.log_error("Session Shutdown Failed", e)


# ============================================================================
# HEALTH CHECK
# ============================================================================

@app.get("/health")
async def health_check():
    active = sum(1 for s in sessions.active_sessions.values() if s.is_active)
    return {
        "status": "healthy",
        "sessions": len(sessions.active_sessions),
        "active_sessions": active,
        "timestamp": datetime.utcnow().isoformat()
    }


# ============================================================================
# SESSION LIFECYCLE
# ============================================================================

@app.post("/sessions/start")
async def start_session(request: StartSessionRequest):
    """
    Start a monitoring session

    Profile and settings are partial dicts merged over the defaults.
    Inverted thresholds are swapped.
    """
    logger.log_api("POST /sessions/start", {"side": request.side_selection.value})

    try:
        profile = apply_partial(UserProfile(), request.profile or {})
        settings = apply_partial(NotificationSettings(), request.settings or {})
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        session = await sessions.start_session(
            side_selection=request.side_selection,
            thresholds=request.thresholds,
            profile=profile,
            settings=settings
        )
        return {
            "success": True,
            "session_id": session.session_id,
            "status": "active",
            "thresholds": session.thresholds.model_dump(),
            "profile": profile.model_dump(),
            "settings": settings.model_dump()
        }
    except Exception as e:
        logger.log_error("Session Start Failed", e)
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/sessions/{session_id}/stop")
async def stop_session(session_id: str):
    logger.log_api(f"POST /sessions/{session_id}/stop", {})
    session = require_session(session_id)

    result = await sessions.stop_session(session_id)
    return {
        **result,
        "session_id": session_id,
        "analytics": session.engine.get_analytics().model_dump()
    }


@app.post("/sessions/{session_id}/reset")
async def reset_session(session_id: str):
    logger.log_api(f"POST /sessions/{session_id}/reset", {})
    session = require_session(session_id)

    await session.engine.reset()
    return {"success": True, "session_id": session_id, "state": session.engine.get_state()}


# ============================================================================
# SIGNAL INGESTION
# ============================================================================

@app.post("/sessions/{session_id}/frames")
async def ingest_frame(session_id: str, request: FrameRequest):
    """
    Analyze one frame of keypoints and evaluate it

    Accepts either named keypoints or a raw 33-point landmark list.
    """
    session = require_session(session_id)

    if request.keypoints is None and request.landmarks is None:
        raise HTTPException(status_code=400, detail="Provide keypoints or landmarks")

    try:
        if request.keypoints is not None:
            keypoints = request.keypoints
        else:
            keypoints = analyzer.keypoints_from_landmarks(request.landmarks)

        result = await session.process_frame(keypoints, request.timestamp)
        return frame_result(session, result)

    except HTTPException:
        raise
    except Exception as e:
        logger.log_error("Frame Processing Failed", e, {"session_id": session_id})
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/sessions/{session_id}/samples")
async def ingest_sample(session_id: str, request: SampleRequest):
    """Evaluate a sample classified elsewhere"""
    session = require_session(session_id)

    try:
        data = request.model_dump()
        if data["timestamp"] is None:
            data["timestamp"] = session.clock()
        sample = PostureSample(**data)

        result = await session.process_sample(sample)
        return frame_result(session, result)

    except HTTPException:
        raise
    except Exception as e:
        logger.log_error("Sample Processing Failed", e, {"session_id": session_id})
        raise HTTPException(status_code=500, detail=str(e))


# ============================================================================
# CONFIGURATION
# ============================================================================

@app.put("/sessions/{session_id}/settings")
async def update_settings(session_id: str, partial: Dict[str, Any]):
    logger.log_api(f"PUT /sessions/{session_id}/settings", {"fields": list(partial.keys())})
    session = require_session(session_id)

    try:
        settings = session.engine.update_settings(partial)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "settings": settings.model_dump()}


@app.put("/sessions/{session_id}/profile")
async def update_profile(session_id: str, partial: Dict[str, Any]):
    logger.log_api(f"PUT /sessions/{session_id}/profile", {"fields": list(partial.keys())})
    session = require_session(session_id)

    try:
        profile = session.engine.update_profile(partial)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "profile": profile.model_dump()}


@app.put("/sessions/{session_id}/detection")
async def update_detection(session_id: str, request: DetectionRequest):
    logger.log_api(f"PUT /sessions/{session_id}/detection", request.model_dump(exclude_none=True))
    session = require_session(session_id)

    thresholds = None
    if request.mild is not None or request.severe is not None:
        thresholds = Thresholds(
            mild=request.mild if request.mild is not None else session.thresholds.mild,
            severe=request.severe if request.severe is not None else session.thresholds.severe
        )
    session.configure_detection(request.side_selection, thresholds)
    return {
        "success": True,
        "side_selection": session.side_selection.value,
        "thresholds": session.thresholds.model_dump()
    }


@app.post("/sessions/{session_id}/snooze")
async def snooze(session_id: str, request: SnoozeRequest):
    logger.log_api(f"POST /sessions/{session_id}/snooze", {"minutes": request.minutes})
    session = require_session(session_id)

    if not session.is_active:
        raise HTTPException(status_code=400, detail="Session is not active")

    until = session.engine.snooze(request.minutes)
    return {
        "success": True,
        "snoozed_until": until,
        "snoozed_until_iso": datetime.fromtimestamp(until).isoformat()
    }


# ============================================================================
# QUERIES & DISMISSAL
# ============================================================================

@app.get("/sessions/{session_id}/analytics")
async def get_analytics(session_id: str):
    session = require_session(session_id)
    return session.engine.get_analytics().model_dump()


@app.get("/sessions/{session_id}/state")
async def get_state(session_id: str):
    session = require_session(session_id)
    last = session.last_sample
    return {
        **session.summary(),
        "engine": session.engine.get_state(),
        "last_sample": last.model_dump(mode="json") if last else None
    }


@app.get("/sessions/{session_id}/messages")
async def get_messages(session_id: str):
    session = require_session(session_id)
    return {"messages": [m.model_dump(mode="json") for m in session.engine.get_active_messages()]}


@app.get("/sessions/{session_id}/events")
async def get_events(session_id: str, since: Optional[float] = None, limit: Optional[int] = None):
    session = require_session(session_id)
    return {"events": session.get_events(since, limit)}


@app.delete("/sessions/{session_id}/messages/{message_id}")
async def dismiss_message(session_id: str, message_id: str):
    """Unknown or already dismissed ids succeed with dismissed=false"""
    logger.log_api(f"DELETE /sessions/{session_id}/messages/{message_id}", {})
    session = require_session(session_id)
    return {"success": True, "dismissed": session.engine.dismiss(message_id)}


@app.delete("/sessions/{session_id}/messages")
async def dismiss_all_messages(session_id: str):
    logger.log_api(f"DELETE /sessions/{session_id}/messages", {})
    session = require_session(session_id)
    return {"success": True, "dismissed": session.engine.dismiss_all()}


# ============================================================================
# ROOT ENDPOINT
# ============================================================================

@app.get("/")
async def root():
    """API information"""
    return {
        "name": "Posture Feedback API",
        "version": "1.0.0",
        "endpoints": {
            "sessions": ["/sessions/start", "/sessions/{id}/stop", "/sessions/{id}/reset"],
            "signal": ["/sessions/{id}/frames", "/sessions/{id}/samples"],
            "configuration": ["/sessions/{id}/settings", "/sessions/{id}/profile",
                              "/sessions/{id}/detection", "/sessions/{id}/snooze"],
            "feedback": ["/sessions/{id}/messages", "/sessions/{id}/events",
                         "/sessions/{id}/analytics", "/sessions/{id}/state"],
            "health": ["/health"]
        },
        "documentation": "/docs"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=config.HOST, port=config.PORT)
