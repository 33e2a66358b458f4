from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from typing import Any, Dict, Optional
import uuid
import structlog

from .connection_manager import ConnectionManager
from .schema.events import (
    EventType, GestureEvent, MarkdownEvent, CompanionStateEvent, UserMessage
)
from aurakai.application.api.route.agent import router as api_router
from aurakai.application.container import ServiceContainer, build_container
from aurakai.domain.streaming.streaming_handler import StreamingHandler
from aurakai.infrastructure.config.settings import get_settings
from aurakai.infrastructure.observability.logging import setup_logging
from aurakai.infrastructure.scheduling.periodic_loop import PeriodicLoop

logger = structlog.get_logger(__name__)


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """Build the HTTP and WebSocket surface around a service container"""

    if container is None:
        settings = get_settings()
        setup_logging(settings.log_level, settings.log_format, service_name=settings.app_name)
        container = build_container(settings)

    app = FastAPI(title="Aurakai Agent Server")

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    connection_manager = ConnectionManager(stale_after_s=container.settings.connection_stale_after_s)
    streaming_handler = StreamingHandler(connection_manager)
    streaming_handler.attach_companion(container.companion)
    streaming_handler.attach_pipeline(container.pipeline)
    for room in container.rooms.values():
        streaming_handler.attach_room(room)
    container.add_room_listener(streaming_handler.attach_room)
    container.add_loop(
        PeriodicLoop(
            "connection_prune",
            container.settings.connection_prune_interval_s,
            connection_manager.prune_stale
        )
    )

    app.state.container = container
    app.state.connection_manager = connection_manager
    app.state.streaming_handler = streaming_handler
    app.include_router(api_router)

    @app.on_event("startup")
    async def startup_event():
        """Restore context and start background loops"""
        await container.start()
        logger.info("Agent server started")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Cleanup on shutdown"""
        await connection_manager.disconnect_all()
        await container.stop()
        logger.info("Agent server shutdown")

    @app.websocket("/ws/companion/{session_id}")
    async def companion_websocket(websocket: WebSocket, session_id: str):
        """Streams companion and pipeline events; accepts messages and gestures"""

        # Validate session ID format
        try:
            uuid.UUID(session_id)
        except ValueError:
            await websocket.close(code=1008, reason="Invalid session ID format")
            return

        await connection_manager.connect(websocket, session_id)

        # Current companion state so the client can render immediately
        await connection_manager.send_event(
            session_id,
            CompanionStateEvent(
                state=container.companion.state.value,
                emotion=container.companion.emotion.value,
                session_id=session_id
            )
        )

        try:
            while True:
                data = await websocket.receive_json()
                connection_manager.touch(session_id)

                try:
                    await handle_client_event(session_id, data)
                except Exception as e:
                    logger.error("Error processing message", error=str(e), session_id=session_id)
                    await connection_manager.send_error(
                        session_id,
                        f"Error processing message: {str(e)}"
                    )

        except WebSocketDisconnect:
            logger.info("Client disconnected", session_id=session_id)
        except Exception as e:
            logger.error("WebSocket error", error=str(e), session_id=session_id)
        finally:
            await connection_manager.disconnect(session_id)

    async def handle_client_event(session_id: str, data: Dict[str, Any]):
        event_type = data.get("type")

        if event_type == EventType.USER_MESSAGE:
            message = UserMessage(**data)
            with structlog.contextvars.bound_contextvars(session_id=session_id):
                response = await container.orchestrator.process_request(message.content)
            await connection_manager.send_event(
                session_id,
                MarkdownEvent(payload=response, session_id=session_id)
            )

        elif event_type == EventType.GESTURE:
            gesture = GestureEvent(**data)
            accepted = container.companion.tap() if gesture.gesture == "tap" else container.companion.long_press()
            if not accepted:
                await connection_manager.send_error(
                    session_id,
                    f"Companion is {container.companion.state.value}; {gesture.gesture} ignored",
                    error_code="gesture_ignored"
                )

        else:
            await connection_manager.send_error(
                session_id,
                f"Unsupported event type: {event_type}",
                error_code="unsupported_event"
            )

    return app
