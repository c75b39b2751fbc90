import uvicorn

from echoflow.api.main import create_app
from echoflow.core.config import get_settings


settings = get_settings()
app = create_app(settings)


if __name__ == "__main__":
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
