import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Optional
import httpx
from fastapi import FastAPI, HTTPException, WebSocket

from config import Config
from exceptions import (
    EngineInitError,
    EngineRuntimeError,
    InvalidSessionStateError,
    MediaAccessError,
)
from models import (
    CreateSessionRequest,
    FeedbackResponse,
    SessionResultsResponse,
    SessionStateResponse,
)
from services.audio import AudioSource, MicrophoneAudioSource, StreamAudioSource
from services.feedback_generator import FeedbackGenerator
from services.recognition import azure_binding_factory
from services.session_sequencer import SessionSequencer
from services.trial_controller import TrialController

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

# One operator-paced session at a time, held in process memory only
current_session: Optional[SessionSequencer] = None

feedback_generator = FeedbackGenerator()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_current_session()


app = FastAPI(title="Read-Aloud Assessment Service", version="1.0.0", lifespan=lifespan)


def create_audio_source(kind: str) -> AudioSource:
    if kind == "microphone":
        return MicrophoneAudioSource()
    return StreamAudioSource()


def create_controller() -> TrialController:
    return TrialController(binding_factory=azure_binding_factory)


async def close_current_session() -> None:
    global current_session
    session = current_session
    current_session = None
    if session is None:
        return
    try:
        await session.close()
    except Exception as e:
        logging.error(f"[{session.session_id}] Error during cleanup: {str(e)}")


def get_session() -> SessionSequencer:
    if current_session is None:
        raise HTTPException(status_code=404, detail="No assessment session has been created")
    return current_session


async def run_command(name: str, command: Callable[[], Awaitable[None]]) -> SessionStateResponse:
    """Run an operator command against the live session and map core errors to HTTP errors."""
    session = get_session()
    try:
        await command()
        return session.snapshot()
    except HTTPException as e:
        raise e
    except InvalidSessionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except (EngineInitError, EngineRuntimeError) as e:
        raise HTTPException(status_code=502, detail=str(e))
    except MediaAccessError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logging.error(f"[{session.session_id}] Error running {name}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to {name}: {str(e)}")


@app.post("/session", response_model=SessionStateResponse)
async def create_session(request: CreateSessionRequest):
    """Replace any existing session and bind recognition for the first reference text."""
    global current_session
    await close_current_session()

    texts = [text.strip() for text in (request.reference_texts or []) if text.strip()]
    try:
        audio_source = create_audio_source(request.audio_source)
    except MediaAccessError as e:
        raise HTTPException(status_code=503, detail=str(e))

    session = SessionSequencer(audio_source, texts or None, controller=create_controller())
    current_session = session
    logging.info(f"[{session.session_id}] Created session using {request.audio_source} audio")
    return await run_command("begin session", session.begin)


@app.get("/session", response_model=SessionStateResponse)
async def get_session_state():
    return get_session().snapshot()


@app.post("/session/start", response_model=SessionStateResponse)
async def start_listening():
    session = get_session()
    return await run_command("start recognition", session.start)


@app.post("/session/stop", response_model=SessionStateResponse)
async def stop_listening():
    session = get_session()
    return await run_command("stop recognition", session.stop)


@app.post("/session/clear", response_model=SessionStateResponse)
async def clear_transcription():
    session = get_session()

    async def clear():
        session.clear()

    return await run_command("clear transcription", clear)


@app.post("/session/advance", response_model=SessionStateResponse)
async def advance_trial():
    session = get_session()
    return await run_command("advance trial", session.advance)


@app.post("/session/rebind", response_model=SessionStateResponse)
async def rebind_trial():
    session = get_session()
    return await run_command("rebind recognizers", session.retry_bind)


@app.post("/session/abort", response_model=SessionStateResponse)
async def abort_session():
    session = get_session()
    return await run_command("abort assessment", session.abort)


@app.get("/session/results", response_model=SessionResultsResponse)
async def get_results():
    session = get_session()
    return SessionResultsResponse(
        session_id=session.session_id,
        phase=session.phase,
        results=list(session.results),
    )


@app.get("/session/feedback", response_model=FeedbackResponse)
async def get_feedback():
    session = get_session()
    text_feedback = await asyncio.to_thread(feedback_generator.generate_feedback, session.results)
    return FeedbackResponse(session_id=session.session_id, text_feedback=text_feedback)


@app.websocket("/session/audio")
async def stream_audio(websocket: WebSocket):
    """Receives 16kHz 16-bit mono PCM frames for the live session."""
    await websocket.accept()
    session = current_session
    if session is None or not isinstance(session.audio_source, StreamAudioSource):
        await websocket.close(code=1008, reason="No session accepting streamed audio")
        return

    audio_source = session.audio_source
    logging.info(f"[{session.session_id}] Audio stream connected")
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logging.info(f"[{session.session_id}] Audio stream disconnected")
                break
            chunk = message.get("bytes")
            if chunk is None:
                logging.debug(f"[{session.session_id}] Ignoring non-binary audio frame")
                continue
            audio_source.write(chunk)
    except MediaAccessError as e:
        logging.warning(f"[{session.session_id}] Audio stream rejected: {str(e)}")
        await websocket.close(code=1011, reason=str(e))


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "message": "Read-Aloud Assessment Service is running"}


@app.get("/health/azure")
async def azure_health_check():
    """Check Azure Speech service connectivity"""
    url = f"https://{Config.AZURE_SPEECH_REGION}.api.cognitive.microsoft.com/sts/v1.0/issueToken"
    try:
        headers = {"Ocp-Apim-Subscription-Key": Config.AZURE_SPEECH_KEY}

        async with httpx.AsyncClient(timeout=Config.HEALTH_CHECK_TIMEOUT) as client:
            response = await client.post(url, headers=headers)

            if response.status_code == 401:
                return {"status": "error", "message": "Invalid API key"}
            elif response.status_code == 429:
                return {"status": "warning", "message": "Rate limited"}
            elif response.status_code == 200:
                return {"status": "healthy", "message": "Azure Speech is reachable"}
            else:
                return {"status": "error", "message": f"Unexpected status: {response.status_code}"}

    except httpx.ReadError:
        return {"status": "error", "message": "Network connectivity issue"}
    except httpx.TimeoutException:
        return {"status": "error", "message": "Connection timeout"}
    except Exception as e:
        return {"status": "error", "message": f"Health check failed: {str(e)}"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
