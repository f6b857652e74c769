"""Hearth entry point."""

import sys

from dotenv import find_dotenv, load_dotenv
from groq import AsyncGroq

from .config import Settings
from .dialogue import DialogueOrchestrator, RandomStyleHints
from .logging import JSONLLogger
from .memory import MemoryManager, ThreadCompressor
from .provider import GroqProvider
from .relay import StreamingRelay
from .store import SQLiteStateStore
from .tasks import BackgroundWriter

USAGE = """Usage: hearth <command>

Commands:
  serve   Run the HTTP server
"""


def build_orchestrator(settings: Settings, groq_client: AsyncGroq | None = None) -> DialogueOrchestrator:
    """Wire the engine's components from settings."""
    store = SQLiteStateStore(settings.db_path)
    store.init_db()

    events = JSONLLogger(log_dir=settings.log_dir)
    provider = GroqProvider(groq_client, settings.generation)
    memory = MemoryManager(store, settings.memory, settings.store)

    return DialogueOrchestrator(
        memory,
        provider,
        compressor=ThreadCompressor(
            provider,
            window=settings.memory.recent_window,
            timeout=settings.dialogue.provider_timeout,
        ),
        relay=StreamingRelay(provider, settings.relay, events=events),
        hints=RandomStyleHints(),
        config=settings.dialogue,
        events=events,
        background=BackgroundWriter(events),
    )


def serve(settings: Settings) -> None:
    import uvicorn

    from .server import create_app

    app = create_app(build_orchestrator(settings))
    uvicorn.run(app, host=settings.host, port=settings.port)


def main() -> None:
    """Main entry point."""
    load_dotenv(find_dotenv(usecwd=True))

    command = sys.argv[1] if len(sys.argv) > 1 else "serve"
    if command == "serve":
        serve(Settings.from_env())
        return

    print(USAGE)
    sys.exit(2)


if __name__ == "__main__":
    main()
