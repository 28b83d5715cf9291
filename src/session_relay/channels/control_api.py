"""
Control API

HTTP surface for starting sessions and relaying their credentials.

Route structure (each API route is also served under /api, which the control
panel uses):
- GET  /                        - Control panel
- POST /session/start           - Start (or reuse) a session
- POST /session/pair            - Send a session's credentials to a number
- GET  /sessions                - List live sessions
- GET  /session/{id}/qr         - Latest QR login code of a session
- POST /generate-session        - One-shot: start, wait for open, send credentials
"""

import logging
from typing import Callable, Optional, Type, TypeVar, Union

from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, ValidationError
import uvicorn

from .. import __version__
from ..core.commands import digits_only
from ..core.controller import SessionController
from ..core.errors import InitializationFailure, InvalidSessionId, RelayError, SessionNotFound
from ..core.registry import SessionRegistry

logger = logging.getLogger(__name__)


class StartSessionRequest(BaseModel):
    sessionId: Optional[str] = None


class PairRequest(BaseModel):
    sessionId: Optional[str] = None
    phoneNumber: Optional[Union[str, int]] = None


class GenerateSessionRequest(BaseModel):
    number: Optional[Union[str, int]] = None


BodyT = TypeVar("BodyT", bound=BaseModel)


class InvalidRequest(ValueError):
    """Request body is not a valid JSON object"""


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


class ControlAPI:
    """
    FastAPI application wrapping a session registry.

    Example:
        api = ControlAPI(registry, factory)
        await api.start()
    """

    def __init__(
        self,
        registry: SessionRegistry,
        controller_factory: Callable[[str], SessionController],
        default_session_id: str = "default",
        pair_wait_timeout: float = 120.0,
        host: str = "0.0.0.0",
        port: int = 3000,
        log_level: str = "info",
    ):
        self.registry = registry
        self.controller_factory = controller_factory
        self.default_session_id = default_session_id
        self.pair_wait_timeout = pair_wait_timeout
        self.host = host
        self.port = port
        self.log_level = log_level
        self.is_active = False

        self.app = FastAPI(
            title="Session Relay",
            description="Messaging session control and credential relay",
            version=__version__
        )

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        self._setup_routes()

    def _setup_routes(self):
        """Setup control panel and API routes"""

        @self.app.get("/", response_class=HTMLResponse)
        async def control_panel():
            """Control panel"""
            return self._render_control_panel()

        router = APIRouter()

        @router.post("/session/start")
        async def start_session(request: Request):
            """Start a session, or report the one that already exists"""
            try:
                body = await self._read_body(request, StartSessionRequest)
            except InvalidRequest as e:
                return _error(400, str(e))

            session_id = body.sessionId or self.default_session_id

            try:
                _, created = await self.registry.create_or_get(session_id, self.controller_factory)
            except InvalidSessionId as e:
                return _error(400, str(e))
            except RelayError as e:
                logger.error(f"Failed to start session {session_id}: {e}")
                return _error(500, str(e))

            return {
                "success": True,
                "message": "Session started successfully" if created else "Session already exists",
                "sessionId": session_id,
            }

        @router.post("/session/pair")
        async def pair_session(request: Request):
            """Send a session's credentials to a phone number"""
            try:
                body = await self._read_body(request, PairRequest)
            except InvalidRequest as e:
                return _error(400, str(e))

            session_id = body.sessionId
            phone_number = str(body.phoneNumber or "")
            if not session_id or not digits_only(phone_number):
                return _error(400, "sessionId and phoneNumber are required")

            try:
                controller = self.registry.get(session_id)
            except SessionNotFound:
                return _error(404, "Session not found")

            try:
                await controller.pair_with(controller.address_for(digits_only(phone_number)))
            except RelayError as e:
                logger.error(f"Pairing {session_id} with {phone_number} failed: {e}")
                return _error(500, str(e))

            return {"success": True, "message": f"Credentials sent to {phone_number}"}

        @router.get("/sessions")
        async def list_sessions():
            """List live sessions"""
            return {"sessions": self.registry.list()}

        @router.get("/session/{session_id}/qr")
        async def session_qr(session_id: str):
            """Latest QR login code reported for a session"""
            try:
                controller = self.registry.get(session_id)
            except SessionNotFound:
                return _error(404, "Session not found")

            if not controller.session.last_qr:
                return _error(404, "No QR code available")

            return {
                "success": True,
                "sessionId": session_id,
                "qr": controller.session.last_qr,
            }

        @router.post("/generate-session")
        async def generate_session(request: Request):
            """Start a session for a number, wait for it to open, send it its credentials"""
            try:
                body = await self._read_body(request, GenerateSessionRequest)
            except InvalidRequest as e:
                return _error(400, str(e))

            number = digits_only(str(body.number or ""))
            if not number:
                return _error(400, "Phone number required")

            try:
                controller, _ = await self.registry.create_or_get(number, self.controller_factory)
            except InvalidSessionId as e:
                return _error(400, str(e))
            except RelayError as e:
                logger.error(f"Failed to start session {number}: {e}")
                return _error(500, str(e))

            try:
                await controller.wait_until_open(self.pair_wait_timeout)
            except InitializationFailure as e:
                logger.warning(f"Session {number} did not open: {e}")
                return _error(504, str(e))

            try:
                await controller.pair_with(controller.address_for(number))
            except RelayError as e:
                logger.error(f"Sending credentials to {number} failed: {e}")
                return _error(500, str(e))

            return {"success": True, "message": "Session created and sent!", "sessionId": number}

        self.app.include_router(router)
        self.app.include_router(router, prefix="/api")

    async def _read_body(self, request: Request, model: Type[BodyT]) -> BodyT:
        """Parse the JSON body into ``model``; an empty body reads as {}"""
        raw = await request.body()
        if not raw.strip():
            return model()
        try:
            body = await request.json()
        except ValueError as e:
            raise InvalidRequest(f"Invalid JSON: {e}") from e
        if not isinstance(body, dict):
            raise InvalidRequest("Request body must be a JSON object")
        try:
            return model.model_validate(body)
        except ValidationError as e:
            raise InvalidRequest(f"Invalid request: {e}") from e

    def _render_control_panel(self) -> str:
        return """<!DOCTYPE html>
<html>
<head>
    <title>Session Relay</title>
    <style>
        body { font-family: Arial, sans-serif; margin: 40px; }
        .container { max-width: 800px; margin: 0 auto; }
        .card { background: #f5f5f5; padding: 20px; margin: 10px 0; border-radius: 8px; }
        button { background: #25D366; color: white; border: none; padding: 10px 20px; border-radius: 5px; cursor: pointer; }
        input { padding: 8px; width: 200px; }
    </style>
</head>
<body>
    <div class="container">
        <h1>Session Relay</h1>
        <p>Session pairing control panel</p>

        <div class="card">
            <h3>Start Session</h3>
            <input type="text" id="sessionId" placeholder="Session ID" value="default">
            <button onclick="startSession()">Start Session</button>
        </div>

        <div class="card">
            <h3>Pair with Number</h3>
            <input type="text" id="phoneNumber" placeholder="Phone number (with country code)">
            <button onclick="pairNumber()">Pair Number</button>
        </div>

        <div class="card">
            <h3>Sessions</h3>
            <button onclick="listSessions()">Refresh</button>
            <ul id="sessions"></ul>
        </div>

        <div id="status"></div>
    </div>

    <script>
        function sessionId() {
            return document.getElementById('sessionId').value || 'default';
        }

        function showStatus(label, text) {
            const card = document.createElement('div');
            card.className = 'card';
            card.textContent = label + ': ' + text;
            const status = document.getElementById('status');
            status.replaceChildren(card);
        }

        async function startSession() {
            const response = await fetch('/api/session/start', {
                method: 'POST',
                headers: { 'Content-Type': 'application/json' },
                body: JSON.stringify({ sessionId: sessionId() })
            });
            const data = await response.json();
            showStatus('Status', data.message || data.error);
            listSessions();
        }

        async function pairNumber() {
            const phoneNumber = document.getElementById('phoneNumber').value;
            if (!phoneNumber) {
                alert('Please enter a phone number');
                return;
            }
            const response = await fetch('/api/session/pair', {
                method: 'POST',
                headers: { 'Content-Type': 'application/json' },
                body: JSON.stringify({ sessionId: sessionId(), phoneNumber })
            });
            const data = await response.json();
            showStatus('Pairing', data.message || data.error);
        }

        async function listSessions() {
            const response = await fetch('/api/sessions');
            const data = await response.json();
            const list = document.getElementById('sessions');
            list.replaceChildren(...data.sessions.map(s => {
                const item = document.createElement('li');
                item.textContent = s.sessionId + ' - ' + s.connectionState;
                return item;
            }));
        }

        listSessions();
    </script>
</body>
</html>
"""

    # =========================================================================
    # SERVER LIFECYCLE
    # =========================================================================

    async def start(self):
        """Serve the control API until stopped"""
        self.is_active = True

        logger.info(f"Control API started on http://{self.host}:{self.port}")

        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level=self.log_level
        )
        server = uvicorn.Server(config)
        await server.serve()

    async def stop(self):
        """Close every session"""
        self.is_active = False
        await self.registry.close_all()
        logger.info("Control API stopped")
