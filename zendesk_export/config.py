"""
Export Configuration

Builds one immutable ExportConfig from the Hydra config (config/hydra/config.yaml)
at process start. Components receive the config explicitly and never read the
environment themselves.
"""

import os
from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple

from dotenv import load_dotenv
from hydra import compose, initialize_config_dir
from omegaconf import OmegaConf

from utils.transform_utils import split_recipients
from zendesk_export.errors import ConfigurationError

project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
CONFIG_DIR = os.getenv("EXPORT_CONFIG_DIR", os.path.join(project_root, "config", "hydra"))


@dataclass(frozen=True)
class ZendeskConfig:
    subdomain: Optional[str]
    email: Optional[str]
    api_token: Optional[str]
    timeout: int = 60
    max_rate_limit_waits: int = 3


@dataclass(frozen=True)
class DatabaseConfig:
    host: str = "localhost"
    port: int = 5432
    name: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None


@dataclass(frozen=True)
class SmtpConfig:
    sender: Optional[str] = None
    password: Optional[str] = None
    host: str = "smtp.gmail.com"
    port: int = 587


@dataclass(frozen=True)
class ExportSettings:
    month: Optional[str] = None
    recipients: Tuple[str, ...] = ()
    max_pages_per_run: int = 0
    enrich_workers: int = 1
    report_base_url: Optional[str] = None
    chain_url: Optional[str] = None


@dataclass(frozen=True)
class PathsConfig:
    reports_dir: str = "./data/reports"


@dataclass(frozen=True)
class ExportConfig:
    zendesk: ZendeskConfig
    db: DatabaseConfig = field(default_factory=DatabaseConfig)
    smtp: SmtpConfig = field(default_factory=SmtpConfig)
    export: ExportSettings = field(default_factory=ExportSettings)
    paths: PathsConfig = field(default_factory=PathsConfig)

    @classmethod
    def from_hydra(cls, cfg) -> "ExportConfig":
        """
        Convert a Hydra/OmegaConf config into an ExportConfig.

        Args:
            cfg: Hydra config object (or anything OmegaConf can wrap)

        Returns:
            ExportConfig

        Raises:
            ConfigurationError: If a numeric option cannot be parsed
        """
        if not OmegaConf.is_config(cfg):
            cfg = OmegaConf.create(cfg)
        data = OmegaConf.to_container(cfg, resolve=True)
        zendesk = data.get("zendesk") or {}
        db = data.get("db") or {}
        smtp = data.get("smtp") or {}
        export = data.get("export") or {}
        paths = data.get("paths") or {}

        return cls(
            zendesk=ZendeskConfig(
                subdomain=_optional_str(zendesk.get("subdomain")),
                email=_optional_str(zendesk.get("email")),
                api_token=_optional_str(zendesk.get("api_token")),
                timeout=_to_int(zendesk.get("timeout", 60), "zendesk.timeout"),
                max_rate_limit_waits=_to_int(zendesk.get("max_rate_limit_waits", 3), "zendesk.max_rate_limit_waits"),
            ),
            db=DatabaseConfig(
                host=_optional_str(db.get("host")) or "localhost",
                port=_to_int(db.get("port", 5432), "db.port"),
                name=_optional_str(db.get("name")),
                user=_optional_str(db.get("user")),
                password=_optional_str(db.get("password")),
            ),
            smtp=SmtpConfig(
                sender=_optional_str(smtp.get("sender")),
                password=_optional_str(smtp.get("password")),
                host=_optional_str(smtp.get("host")) or "smtp.gmail.com",
                port=_to_int(smtp.get("port", 587), "smtp.port"),
            ),
            export=ExportSettings(
                month=_optional_str(export.get("month")),
                recipients=tuple(split_recipients(export.get("recipients"))),
                max_pages_per_run=_to_int(export.get("max_pages_per_run", 0), "export.max_pages_per_run"),
                enrich_workers=max(1, _to_int(export.get("enrich_workers", 1), "export.enrich_workers")),
                report_base_url=_optional_str(export.get("report_base_url")),
                chain_url=_optional_str(export.get("chain_url")),
            ),
            paths=PathsConfig(
                reports_dir=_optional_str(paths.get("reports_dir")) or "./data/reports",
            ),
        )

    def validate(self):
        """Raises ConfigurationError when the Zendesk credentials are incomplete."""
        if not all([self.zendesk.subdomain, self.zendesk.email, self.zendesk.api_token]):
            raise ConfigurationError(
                "ZENDESK_SUBDOMAIN, ZENDESK_EMAIL, or ZENDESK_API_TOKEN not found in config or environment variables."
            )
        return self


def load_config(overrides: Sequence[str] = ()) -> ExportConfig:
    """
    Load .env, compose the Hydra config and convert it to an ExportConfig.

    Args:
        overrides: Hydra override strings (e.g. ["export.month=2025-12"])

    Returns:
        ExportConfig
    """
    load_dotenv()
    with initialize_config_dir(config_dir=CONFIG_DIR, version_base=None):
        cfg = compose(config_name="config", overrides=list(overrides))
    return ExportConfig.from_hydra(cfg)


def _optional_str(value):
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _to_int(value, name):
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Option {name} must be an integer, got {value!r}") from e
