"""
FORMCOACH Coach Service Router

Endpoints for exercise profiles, coaching sessions and live form feedback.
Clients run pose estimation on-device and send landmark frames; every frame
is answered with errors, phase, repetitions, quality and readiness.
"""

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, HTTPException
from pydantic import BaseModel
from typing import Optional, List, Dict, Any

from shared.utils import setup_logger
from .models import (
    AngleSet,
    CoachingSessionHandler,
    DetectionMode,
    ExerciseType,
    Landmark,
    PoseFrame,
    SessionState,
    UnknownExerciseError,
    get_session_handler,
    list_profiles
)

logger = setup_logger("formcoach.router")

router = APIRouter()

NUM_LANDMARKS = 33


def get_services() -> CoachingSessionHandler:
    """Get the session handler instance."""
    return get_session_handler()


# ============= Pydantic Models =============

class LandmarkInput(BaseModel):
    x: float
    y: float
    z: float = 0.0
    visibility: float = 0.0


class StartSessionRequest(BaseModel):
    user_id: str
    exercise_type: str
    target_reps: int = 10
    detection_mode: Optional[str] = None


class FrameRequest(BaseModel):
    landmarks: List[LandmarkInput]
    angles: Optional[Dict[str, float]] = None
    timestamp_ms: Optional[float] = None


# ============= Helpers =============

def to_pose_frame(request: FrameRequest) -> PoseFrame:
    """Convert a frame payload into a PoseFrame. Raises ValueError on a bad payload."""
    if len(request.landmarks) != NUM_LANDMARKS:
        raise ValueError(f"Expected {NUM_LANDMARKS} landmarks, got {len(request.landmarks)}")
    return PoseFrame.from_landmarks(
        [Landmark(lm.x, lm.y, lm.z, lm.visibility) for lm in request.landmarks],
        timestamp_ms=request.timestamp_ms
    )


def require_session(session_handler: CoachingSessionHandler, session_id: str):
    session = session_handler.get_session(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


# ============= REST Endpoints =============

@router.get("/exercises")
async def get_exercises():
    """Get supported exercises and what is checked for each."""
    exercises = [profile.to_dict() for profile in list_profiles()]
    return {
        "exercises": exercises,
        "total": len(exercises),
        "detection_modes": [m.value for m in DetectionMode]
    }


@router.post("/session/start")
async def start_coaching_session(request: StartSessionRequest):
    """
    Start a new coaching session.

    Returns a session ID for the frame endpoint and the WebSocket stream.
    """
    session_handler = get_services()

    if request.detection_mode is not None:
        try:
            DetectionMode(request.detection_mode)
        except ValueError:
            raise HTTPException(
                status_code=400,
                detail=f"Invalid detection mode. Valid modes: {[m.value for m in DetectionMode]}"
            )

    try:
        session = session_handler.create_session(
            user_id=request.user_id,
            exercise_type=request.exercise_type,
            target_reps=request.target_reps,
            detection_mode=request.detection_mode
        )
    except UnknownExerciseError:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid exercise type. Valid types: {[e.value for e in ExerciseType]}"
        )

    return {
        "status": "created",
        "session_id": session.session_id,
        "user_id": request.user_id,
        "exercise_type": session.exercise_type.value,
        "detection_mode": session.analyzer.detection_mode.value,
        "target": {"reps": request.target_reps},
        "readiness_message": session.analyzer.get_readiness_message(),
        "websocket_url": f"/api/coach/ws/session/{session.session_id}"
    }


@router.post("/session/{session_id}/frame")
async def submit_frame(session_id: str, request: FrameRequest):
    """Analyse one landmark frame."""
    session_handler = get_services()
    require_session(session_handler, session_id)

    try:
        frame = to_pose_frame(request)
        angles = AngleSet(request.angles) if request.angles is not None else None
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    result = session_handler.process_frame(session_id, frame, angles, request.timestamp_ms)
    if "error" in result:
        raise HTTPException(status_code=404, detail=result["error"])
    return result


@router.get("/session/{session_id}/readiness")
async def get_readiness(session_id: str):
    """Current readiness state and coaching message."""
    session = require_session(get_services(), session_id)
    return {
        "session_id": session_id,
        "readiness": session.analyzer.readiness_state.value,
        "message": session.analyzer.get_readiness_message()
    }


@router.get("/session/{session_id}/stats")
async def get_session_stats(session_id: str):
    """Repetitions, rolling quality, phase and processing metrics."""
    session_handler = get_services()
    session = require_session(session_handler, session_id)
    return {
        "session": session_handler.get_session_status(session_id),
        "stats": session.analyzer.get_session_stats()
    }


@router.get("/session/{session_id}/report")
async def get_scientific_report(session_id: str):
    """Scientific session report with validation metrics."""
    session = require_session(get_services(), session_id)
    return session.analyzer.get_scientific_report()


@router.post("/session/{session_id}/reset")
async def reset_session(session_id: str):
    """Reset repetitions and analysis state."""
    session_handler = get_services()
    require_session(session_handler, session_id)
    return session_handler.reset_session(session_id)


@router.post("/session/{session_id}/complete")
async def complete_session(session_id: str):
    """Complete a coaching session and get final results."""
    session_handler = get_services()
    require_session(session_handler, session_id)

    result = session_handler.complete_session(session_id)

    return {
        "status": "completed",
        "session_id": session_id,
        "result": result
    }


# ============= WebSocket Endpoints =============

@router.websocket("/ws/session/{session_id}")
async def coaching_session_stream(websocket: WebSocket, session_id: str):
    """
    Real-time coaching over a WebSocket.

    Accepts JSON frames ({"landmarks": [...], "timestamp_ms": ...}) or
    {"type": "RESET"}, and sends:
    - FRAME_RESULT for every analysed frame
    - REPETITION_COMPLETED when a repetition is counted
    - READINESS_CHANGED when the readiness state changes
    """
    await websocket.accept()
    session_handler = get_services()

    session = session_handler.get_session(session_id)
    if not session:
        await websocket.send_json({
            "type": "ERROR",
            "message": f"Session {session_id} not found"
        })
        await websocket.close()
        return

    try:
        await websocket.send_json({
            "type": "SESSION_STARTED",
            "session_id": session_id,
            "exercise_type": session.exercise_type.value,
            "target_reps": session.target_reps,
            "readiness_message": session.analyzer.get_readiness_message()
        })

        session_handler.resume_session(session_id)

        while True:
            data = await websocket.receive_json()

            if isinstance(data, dict) and data.get("type") == "RESET":
                await websocket.send_json({"type": "RESET", **session_handler.reset_session(session_id)})
                continue

            try:
                request = FrameRequest(**data)
                frame = to_pose_frame(request)
                angles = AngleSet(request.angles) if request.angles is not None else None
            except (TypeError, ValueError) as e:
                await websocket.send_json({
                    "type": "ERROR",
                    "message": str(e)
                })
                continue

            frame_result = session_handler.process_frame(session_id, frame, angles, request.timestamp_ms)
            if "error" in frame_result:
                await websocket.send_json({"type": "ERROR", "message": frame_result["error"]})
                break

            await websocket.send_json({"type": "FRAME_RESULT", **frame_result})

            if frame_result.get("readiness_changed"):
                await websocket.send_json({
                    "type": "READINESS_CHANGED",
                    "readiness": frame_result["readiness"],
                    "message": frame_result["readiness_message"]
                })

            if frame_result.get("repetition_completed"):
                await websocket.send_json({
                    "type": "REPETITION_COMPLETED",
                    "repetition_count": frame_result["repetition_count"],
                    "quality_score": frame_result["quality_score"],
                    "target_reached": frame_result.get("target_reached", False)
                })

    except WebSocketDisconnect:
        logger.info(f"Session {session_id} disconnected")
        if session.state == SessionState.ACTIVE:
            session_handler.pause_session(session_id)
