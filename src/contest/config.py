from typing import Optional, Sequence

import dotenv

from core.config import Config, ConfigOpts

from .constants import CONTEST_PORT, PHASE_TICK_INTERVAL

dotenv.load_dotenv()


def _str_to_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


class ContestConfig(Config):
    def __init__(self, argv: Optional[Sequence[str]] = None):
        opts = ConfigOpts(
            service_name="contest",
            settings_files=["contest.toml"],
            argv=argv,
        )
        super().__init__(opts)
        self.log_file = self._normalize_log_file(self.settings.get("log_file"))

    def add_args(self):
        """Add command line arguments"""
        super().add_args()

        # database configuration
        self._parser.add_argument(
            "--database-url",
            type=str,
            help="Database URL for the contest service",
            default=self.settings.get(
                "database_url",
                "postgresql+asyncpg://postgres@localhost/design_contest",
            ),
        )

        self._parser.add_argument(
            "--auto-create-tables",
            type=_str_to_bool,
            help="Create missing tables on startup instead of relying on migrations",
            default=self.settings.get("auto_create_tables", False),
        )

        # http server configuration
        self._parser.add_argument(
            "--host",
            type=str,
            help="HTTP server host to bind to",
            default=self.settings.get("host", "0.0.0.0"),
        )

        self._parser.add_argument(
            "--port",
            type=int,
            help="HTTP server port to bind to",
            default=self.settings.get("port", CONTEST_PORT),
        )

        # auth
        self._parser.add_argument(
            "--jwt-secret",
            type=str,
            help="Shared secret used to verify bearer tokens",
            default=self.settings.get("jwt_secret"),
        )

        # orchestrator
        self._parser.add_argument(
            "--phase-tick-interval",
            type=lambda x: int(x) if int(x) > 0 else PHASE_TICK_INTERVAL,
            help="Seconds between competition clock ticks",
            default=self.settings.get("phase_tick_interval", PHASE_TICK_INTERVAL),
        )

        self._parser.add_argument(
            "--persist-phase-flags",
            type=_str_to_bool,
            help=(
                "Write the assigned/created_scores flags back after a phase runs. "
                "When false every tick past a deadline re-runs that phase."
            ),
            default=self.settings.get("persist_phase_flags", True),
        )

        self._parser.add_argument(
            "--run-scheduler",
            type=_str_to_bool,
            help="Run the competition clock inside the API process",
            default=self.settings.get("run_scheduler", True),
        )

    @staticmethod
    def _normalize_log_file(value) -> str | None:
        if value is None:
            return None
        string_value = str(value).strip()
        return string_value or None
