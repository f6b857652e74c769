"""Settings loaded from environment variables."""

import os
from dataclasses import dataclass, field
from pathlib import Path

from .dialogue import DialogueConfig
from .memory import MemoryConfig, NudgePolicy
from .provider import GenerationConfig
from .relay import RelayConfig
from .store import StoreConfig


@dataclass
class Settings:
    """Everything needed to assemble the engine."""

    db_path: Path = field(default_factory=lambda: Path.home() / ".hearth" / "state.db")
    log_dir: Path = field(default_factory=lambda: Path.home() / ".hearth" / "logs")
    host: str = "127.0.0.1"
    port: int = 8000
    store: StoreConfig = field(default_factory=StoreConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    dialogue: DialogueConfig = field(default_factory=DialogueConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    relay: RelayConfig = field(default_factory=RelayConfig)

    @classmethod
    def from_env(cls) -> "Settings":
        """Load configuration from environment variables."""
        timeout = float(os.getenv("HEARTH_PROVIDER_TIMEOUT", "8"))
        nudge = NudgePolicy(
            min_gap_ms=int(os.getenv("HEARTH_NUDGE_MIN_GAP_MS", "75000")),
            max_per_day=int(os.getenv("HEARTH_NUDGE_MAX_PER_DAY", "3")),
        )
        settings = cls(
            host=os.getenv("HEARTH_HOST", "127.0.0.1"),
            port=int(os.getenv("HEARTH_PORT", "8000")),
            store=StoreConfig(key_prefix=os.getenv("HEARTH_KEY_PREFIX", "hearth:")),
            memory=MemoryConfig(
                thread_cap=int(os.getenv("HEARTH_THREAD_CAP", "200")),
                recent_window=int(os.getenv("HEARTH_RECENT_WINDOW", "20")),
                nudge=nudge,
            ),
            dialogue=DialogueConfig(
                assistant_name=os.getenv("HEARTH_ASSISTANT_NAME", "Hearth"),
                provider_timeout=timeout,
            ),
            generation=GenerationConfig(
                model=os.getenv("GROQ_MODEL", "llama-3.1-70b-versatile"),
            ),
            relay=RelayConfig(call_timeout=timeout),
        )
        if os.getenv("HEARTH_DB_PATH"):
            settings.db_path = Path(os.environ["HEARTH_DB_PATH"]).expanduser()
        if os.getenv("HEARTH_LOG_DIR"):
            settings.log_dir = Path(os.environ["HEARTH_LOG_DIR"]).expanduser()
        return settings
