import logging
import os
from pathlib import Path
from urllib.parse import quote, unquote, urlsplit, urlunsplit
from pydantic import BaseModel
from dataclasses import dataclass, fields
import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "HOPFETCH_CONFIG"
PROXY_ENV_VAR = "HOPFETCH_PROXY"
CONFIG_FILE_NAME = "fetch_config.yaml"


def _from_cwd(path: str | Path) -> Path:
    # Relative paths belong to the caller's working directory, not the install dir
    p = Path(path)
    return p if p.is_absolute() else Path.cwd() / p


class ProxySettings(BaseModel):
    """
    HTTP(S) proxy used by AiohttpTransport.

    Credentials are stored decoded and percent-encoded again by `url`.
    """

    server: str | None = None
    username: str | None = None
    password: str | None = None

    @classmethod
    def from_url(cls, value: str | None) -> "ProxySettings":
        value = (value or "").strip().strip('"').strip("'")
        if not value:
            return cls()

        parsed = urlsplit(value)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            logger.warning("Proxy does not look like an http(s) URL: %s", value)
            return cls()

        server = f"{parsed.scheme}://{parsed.hostname}"
        if parsed.port:
            server += f":{parsed.port}"
        return cls(
            server=server,
            username=unquote(parsed.username) if parsed.username is not None else None,
            password=unquote(parsed.password) if parsed.password is not None else None,
        )

    @property
    def url(self) -> str | None:
        """Proxy URL passed to aiohttp as `proxy=`, credentials included."""
        if not self.server or self.username is None:
            return self.server
        credentials = quote(self.username, safe="")
        if self.password is not None:
            credentials += ":" + quote(self.password, safe="")
        parsed = urlsplit(self.server)
        return urlunsplit(parsed._replace(netloc=f"{credentials}@{parsed.netloc}"))


def load_proxy_from_txt(path: str | Path) -> ProxySettings:
    """
    Load proxy settings from a text file whose first non-empty line is a URL.

    Relative paths are resolved against the current working directory.
    """
    p = _from_cwd(path)
    if not p.exists():
        logger.warning("Proxy file not found: %s", p)
        return ProxySettings()

    lines = [ln for ln in p.read_text(encoding="utf-8").splitlines() if ln.strip()]
    if not lines:
        logger.warning("Proxy file is empty: %s", p)
        return ProxySettings()
    return ProxySettings.from_url(lines[0])


@dataclass
class FetchConfig:
    """
    Central configuration for fetch behavior.

    Values can be overridden via fetch_config.yaml in the working directory,
    or a YAML file named by the HOPFETCH_CONFIG environment variable.
    Per-request options always win over these defaults.
    """

    # General
    user_agent: str = "hopfetch/0.1"
    compress: bool = True
    chunk_size: int = 16 * 1024

    # Redirects
    max_redirects: int = 20

    # Timeouts (0 disables the request timeout)
    default_timeout_s: float = 0.0
    http_connect_timeout_s: float | None = None

    # Transport
    use_proxy: bool = False
    proxy_url: str | None = None
    proxy_file: str | None = None
    http_max_connections: int = 100


def resolve_proxy(config: FetchConfig) -> ProxySettings | None:
    """
    Proxy for `config`: proxy_url, then proxy_file, then $HOPFETCH_PROXY.

    Returns None when none of them names a usable proxy.
    """
    if config.proxy_url:
        proxy = ProxySettings.from_url(config.proxy_url)
    elif config.proxy_file:
        proxy = load_proxy_from_txt(config.proxy_file)
    else:
        proxy = ProxySettings.from_url(os.environ.get(PROXY_ENV_VAR))
    return proxy if proxy.server else None


def load_fetch_config(path: str | Path | None = None) -> FetchConfig:
    """
    Load FetchConfig from YAML if present; otherwise use defaults.

    Lookup order: explicit `path`, $HOPFETCH_CONFIG, then
    `fetch_config.yaml` in the current working directory.
    """

    if path is None:
        path = os.environ.get(CONFIG_ENV_VAR) or CONFIG_FILE_NAME

    path = _from_cwd(path)

    if not path.exists():
        logger.debug("YAML not found at %s, using defaults", path)
        return FetchConfig()

    raw = path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw) or {}

    if not isinstance(data, dict):
        logger.warning("Expected mapping in %s, got %s, using defaults", path, type(data))
        return FetchConfig()

    allowed_keys = {f.name for f in fields(FetchConfig)}
    filtered = {k: v for k, v in data.items() if k in allowed_keys}

    return FetchConfig(**filtered)

DEFAULT_FETCH_CONFIG = load_fetch_config()
