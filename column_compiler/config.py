import json
import logging
import os
from dataclasses import dataclass, field, fields, replace
from typing import Dict, List, Optional, Tuple

from column_compiler.errors import ConfigError
from column_compiler.models import ErrorKind

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "config.json"


@dataclass
class PipelineConfig:
    concurrency: int = 3
    delay: float = 2.0              # seconds each worker waits between items
    timeout: float = 30.0           # navigation timeout, seconds
    content_timeout: float = 10.0   # wait for the content selector, seconds
    settle_timeout: float = 5.0     # post-render settle wait, seconds
    max_attempts: int = 3
    retry_base_delay: float = 1.0
    output_dir: str = "downloads"
    merge: bool = True
    epub: bool = False
    delete_after_merge: bool = False
    headless: bool = True
    limit: Optional[int] = None
    dry_run: bool = False

    def normalize(self):
        if self.concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        for name in ("delay", "timeout", "content_timeout", "settle_timeout", "retry_base_delay"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")
        if self.limit is not None and self.limit < 1:
            raise ValueError("limit must be a positive integer")
        self.output_dir = os.path.abspath(os.path.expanduser(self.output_dir))


@dataclass
class SiteProfile:
    """Everything that is specific to the site a collection lives on."""

    base_url: str = "https://time.geekbang.org"
    article_list_marker: str = "/serv/v1/column/articles"
    article_url_template: str = "{base_url}/column/article/{id}"
    cookie_domain: str = ".geekbang.org"
    # First selector that matches is used as the content root; any of them signals content-ready.
    content_selectors: Tuple[str, ...] = (
        ".Index_articleContent_QBG5G",
        ".article-content",
        "[class*='articleContent']",
        "article",
        "main",
        ".content",
    )
    user_agent: str = "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36"

    @property
    def content_ready_selector(self):
        return ", ".join(self.content_selectors)

    def article_url(self, article_id):
        return self.article_url_template.format(base_url=self.base_url.rstrip("/"), id=article_id)


@dataclass
class ClassificationRules:
    """Keyword tables used to classify failures, spot code blocks and drop page widgets."""

    auth_markers: List[str] = field(default_factory=lambda: [
        "please log in",
        "please sign in",
        "log in to continue",
        "sign in to continue",
        "login required",
        "purchase to read",
        "subscribe to read",
        "quota exceeded",
        "请先登录",
        "登录后",
        "购买后",
        "订阅后即可",
        "试读已结束",
        "已达上限",
    ])
    status_kinds: Dict[int, ErrorKind] = field(default_factory=lambda: {
        401: ErrorKind.AUTH_OR_PERMISSION,
        402: ErrorKind.AUTH_OR_PERMISSION,
        403: ErrorKind.AUTH_OR_PERMISSION,
        404: ErrorKind.NOT_FOUND,
        410: ErrorKind.NOT_FOUND,
        408: ErrorKind.TIMEOUT,
        504: ErrorKind.TIMEOUT,
    })
    network_not_found_markers: List[str] = field(default_factory=lambda: [
        "net::ERR_NAME_NOT_RESOLVED",
        "net::ERR_ADDRESS_UNREACHABLE",
        "net::ERR_FILE_NOT_FOUND",
    ])
    network_timeout_markers: List[str] = field(default_factory=lambda: [
        "net::ERR_TIMED_OUT",
        "net::ERR_CONNECTION_TIMED_OUT",
    ])
    code_class_hints: List[str] = field(default_factory=lambda: [
        "code", "highlight", "hljs", "prism", "codeblock", "syntax", "monospace",
    ])
    code_style_hints: List[str] = field(default_factory=lambda: [
        "monospace", "consolas", "courier", "menlo", "white-space: pre", "white-space:pre",
    ])
    # Text of outline widgets that carry no class or id worth matching.
    noise_labels: List[str] = field(default_factory=lambda: ["大纲"])


def load_config(path=None):
    """Read the JSON config file. A missing file yields an empty dict."""
    path = path or os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE)
    if not os.path.exists(path):
        logger.debug("No config file at %s", path)
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Malformed config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")
    return data


TRUE_STRINGS = {"1", "true", "yes", "on"}
FALSE_STRINGS = {"0", "false", "no", "off"}


def _to_bool(value):
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str) and value.strip().lower() in TRUE_STRINGS | FALSE_STRINGS:
        return value.strip().lower() in TRUE_STRINGS
    raise ValueError(f"not a boolean: {value!r}")


def _to_int(value):
    if isinstance(value, bool):
        raise ValueError(f"not an integer: {value!r}")
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(f"not an integer: {value!r}")
    return int(value)


def _to_float(value):
    if isinstance(value, bool):
        raise ValueError(f"not a number: {value!r}")
    return float(value)


def _to_str(value):
    if not isinstance(value, str):
        raise ValueError(f"not a string: {value!r}")
    return value


CONVERTERS = {
    bool: _to_bool,
    int: _to_int,
    float: _to_float,
    str: _to_str,
    Optional[int]: _to_int,
}


def coerce_field(name, value):
    """Convert a raw config value (JSON or CLI) to the type of PipelineConfig.<name>."""
    kind = {f.name: f.type for f in fields(PipelineConfig)}[name]
    if value is None and kind == Optional[int]:
        return None
    try:
        return CONVERTERS[kind](value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {name}: {e}") from e


def merge_config(file_values, overrides):
    """Build a PipelineConfig; explicit overrides (CLI values) win over file values."""
    known = {f.name for f in fields(PipelineConfig)}
    values = {k: v for k, v in file_values.items() if k in known}
    values.update({k: v for k, v in overrides.items() if k in known and v is not None})
    values = {k: coerce_field(k, v) for k, v in values.items()}
    config = PipelineConfig(**values)
    config.normalize()
    return config


def rules_from_config(file_values, base=None):
    rules = base or ClassificationRules()
    updates = {}
    for name in ("auth_markers", "noise_labels"):
        values = file_values.get(name)
        if values is None:
            continue
        if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
            raise ConfigError(f"{name} must be a list of strings")
        updates[name] = values
    return replace(rules, **updates) if updates else rules
