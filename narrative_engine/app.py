import logging

from fastapi import FastAPI

from narrative_engine.config import Settings, make_llm
from narrative_engine.llm import LLM
from narrative_engine.routes import router
from narrative_engine.sessions import SessionRegistry


def create_app(settings: Settings | None = None, llm: LLM | None = None) -> FastAPI:
    """Build the API app. *llm* overrides the client built from *settings* for every session."""
    resolved = settings or Settings.from_env()

    def llm_factory() -> LLM:
        return llm if llm is not None else make_llm(resolved)

    app = FastAPI(title="Narrative Engine")
    app.state.sessions = SessionRegistry(
        llm_factory,
        language=resolved.language,
        minutes_per_turn=resolved.minutes_per_turn,
    )
    app.include_router(router, prefix="/api")
    return app


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str) -> None:
    """Send narrative_engine records at *level* and above to stderr."""
    logging.basicConfig(format=LOG_FORMAT)
    logging.getLogger("narrative_engine").setLevel(level.upper())


# Default app instance for uvicorn (settings from the environment / .env)
_settings = Settings.from_env()
configure_logging(_settings.log_level)
app = create_app(_settings)
