import uvicorn

from aurakai.application.websocket.ws_server import create_app
from aurakai.infrastructure.config.settings import get_settings


def main():
    settings = get_settings()
    uvicorn.run(create_app(), host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
