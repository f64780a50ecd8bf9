import functools
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Literal, Optional

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from pydantic import AliasChoices, BaseModel, Field, ValidationError

from livechat_relay.common.config import build_livechat_config, get_livechat_settings, load_config
from livechat_relay.data_models import ChatEvent
from livechat_relay.session import AggregationSession, SessionRegistry
from livechat_relay.twitch import TwitchConnector
from livechat_relay.utils.logger import get_logger, setup_logging
from livechat_relay.youtube import YouTubeConnector

logger = get_logger(__name__)

DEFAULT_SESSION_ID = "default"


class ControlRequest(BaseModel):
    """A control message sent by a subscriber over its websocket."""
    type: Literal["start", "stop", "poll"] = "start"
    push_channel: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("pushChannel", "twitchChannel", "push_channel")
    )
    pull_channel: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("pullChannel", "youtubeChannelId", "pull_channel")
    )


class SessionSnapshot(BaseModel):
    sessionId: str
    status: str
    pushSourceHandle: Optional[str] = None
    pullSourceHandle: Optional[str] = None
    watermark: Optional[str] = None
    subscriberCount: int
    deliveryFailures: int


class HealthResponse(BaseModel):
    status: str
    sessions: int


def create_session(session_id: str, on_idle, livechat_settings: Dict[str, Any],
                   connector_config: Dict[str, Dict[str, Any]]) -> AggregationSession:
    """Builds a session with its own Twitch and YouTube connectors."""
    push_connector = TwitchConnector.create(connector_config.get("twitch", {}))
    pull_connector = YouTubeConnector.create(
        connector_config.get("youtube", {}), batch_size=livechat_settings["batch_size"]
    )
    return AggregationSession(
        session_id,
        push_connector=push_connector,
        pull_connector=pull_connector,
        settings=livechat_settings,
        on_idle=on_idle,
    )


def create_app(session_factory=None, config: Optional[Dict[str, Any]] = None) -> FastAPI:
    """
    Builds the FastAPI app. `session_factory(session_id, on_idle)` defaults to
    real connectors configured from config.json and the environment.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app_config = load_config() if config is None else config
        setup_logging(app_config)
        factory = session_factory
        if factory is None:
            factory = functools.partial(
                create_session,
                livechat_settings=get_livechat_settings(app_config),
                connector_config=build_livechat_config(),
            )
        app.state.registry = SessionRegistry(factory)
        logger.info("Live chat relay started.")

        yield

        logger.info("Shutting down...")
        await app.state.registry.close_all()

    app = FastAPI(
        title="Live chat relay",
        description="Merges Twitch and YouTube live chat into one stream per session",
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        return HealthResponse(status="healthy", sessions=len(app.state.registry))

    @app.get("/sessions", response_model=List[SessionSnapshot])
    async def list_sessions():
        return [SessionSnapshot(**session.snapshot()) for session in app.state.registry.sessions()]

    @app.websocket("/ws")
    @app.websocket("/ws/{session_id}")
    async def chat_socket(websocket: WebSocket, session_id: str = DEFAULT_SESSION_ID):
        await websocket.accept()
        session = app.state.registry.get_or_create(session_id)
        subscriber_id = session.add_subscriber(websocket.send_json)
        logger.info(f"A user connected to session {session_id}.")

        stop_requested = False
        try:
            while True:
                text = await websocket.receive_text()
                try:
                    request = ControlRequest.model_validate_json(text)
                except ValidationError as e:
                    logger.warning(f"Invalid control request on session {session_id}: {e.errors()}")
                    await websocket.send_json(ChatEvent.notice("Invalid request.").to_dict())
                    continue

                if request.type == "stop":
                    stop_requested = True
                    break
                if request.type == "poll":
                    session.poll_now()
                    continue
                await session.start(request.push_channel, request.pull_channel)
        except WebSocketDisconnect:
            logger.info(f"User disconnected from session {session_id}.")
        finally:
            session.remove_subscriber(subscriber_id)

        if stop_requested:
            await websocket.close()

    return app


app = create_app()


def main():
    config = load_config()
    setup_logging(config)
    server = config.get("server", {})
    uvicorn.run(app, host=server.get("host", "0.0.0.0"), port=int(server.get("port", 3001)))


if __name__ == "__main__":
    main()
