"""
Configuration options for contest services
"""

from argparse import ArgumentParser
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Sequence

from dynaconf import Dynaconf

from .errors import ConfigurationError
from .log import get_logger

logger = get_logger(__name__)


@dataclass
class ConfigOpts:
    service_name: str = "contest"
    settings_files: list[str] = field(default_factory=list)
    # None means "read sys.argv"; tests pass an explicit list
    argv: Optional[Sequence[str]] = None


class Config:
    """Configurations

    Values come from TOML settings files first and can be overridden by the
    matching CLI flag. Unknown CLI arguments are ignored so the same config
    can be built under uvicorn, alembic or pytest.
    """

    def __init__(self, opts: ConfigOpts):
        self.service_name = opts.service_name
        self._parser = ArgumentParser(prog=opts.service_name)

        self._parser.add_argument(
            "--config",
            "-c",
            type=str,
            help="Path to configuration file (TOML format)",
            default=None,
        )

        known_args, _ = self._parser.parse_known_args(opts.argv)

        settings_files = ["settings.toml", ".secrets.toml", *opts.settings_files]
        if known_args.config:
            config_path = Path(known_args.config)
            if not config_path.exists():
                raise ConfigurationError(
                    f"Config file not found: {known_args.config}"
                )
            settings_files = [known_args.config]
            logger.info(f"Using custom config file: {known_args.config}")

        self.settings: Dynaconf = Dynaconf(
            settings_files=settings_files,
            envvar_prefix="CONTEST",
            load_dotenv=True,
        )

        self.add_args()

        options, _ = self._parser.parse_known_args(opts.argv)
        logger.debug(f"Current config: {vars(options)}")

        for key, value in vars(options).items():
            self.settings[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        return self.settings.get(key, default)

    def add_args(self):
        """Add command line arguments"""
        self._parser.add_argument(
            "--log-file",
            type=str,
            help="File path to write logs to (in addition to stdout). Leave empty to disable.",
            default=self.settings.get("log_file"),
        )
