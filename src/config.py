"""
Project configuration.

Lookup order for the project root:
1. explicit argument
2. CARTOGRAPH_PROJECT_PATH environment variable
3. current working directory

Optional overrides live in <root>/.cartograph/config.json:
{
    "srcPath": "lib",
    "extensions": [".js", ".ts"],
    "ignoreDirs": ["node_modules", "dist"],
    "factoryToken": "nova",
    "creatorSuffixes": ["nova", "new", "create", "init"],
    "roleRules": [["^init", "entry"], ["^get|^find", "service"]],
    "docLookback": 500,
    "maxFileSize": 1048576
}
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

ENV_PROJECT_PATH = "CARTOGRAPH_PROJECT_PATH"
STATE_DIR = ".cartograph"
CONFIG_FILE = "config.json"

DEFAULT_EXTENSIONS = [".js", ".cjs", ".mjs", ".jsx", ".ts", ".tsx", ".vue"]
DEFAULT_IGNORE_DIRS = ["node_modules", "dist", "build", "coverage", ".cache", ".backups", STATE_DIR]
DEFAULT_FACTORY_TOKEN = "nova"
DEFAULT_CREATOR_SUFFIXES = ["new", "create", "init"]
DEFAULT_MAX_FILE_SIZE = 1024 * 1024

# Ordered: the first matching pattern wins
DEFAULT_ROLE_RULES = [
    (r"^_", "internal"),
    (r"^init", "entry"),
    (r"^genesis$", "flow"),
    (r"^(create|build)", "core"),
    (r"^(get|find)", "service"),
    (r"^(update|replace)", "service"),
    (r"^(adapt|transform)", "adapter"),
]


@dataclass
class CartographConfig:
    """Resolved configuration for one project"""
    project_root: Path
    src_dir: str = "src"
    extensions: list[str] = field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    ignore_dirs: list[str] = field(default_factory=lambda: list(DEFAULT_IGNORE_DIRS))
    factory_token: str = DEFAULT_FACTORY_TOKEN
    creator_suffixes: Optional[list[str]] = None
    role_rules: list[tuple[str, str]] = field(default_factory=lambda: list(DEFAULT_ROLE_RULES))
    doc_lookback: int = 500
    max_file_size: int = DEFAULT_MAX_FILE_SIZE

    def __post_init__(self):
        self.project_root = Path(self.project_root).resolve()
        if self.creator_suffixes is None:
            self.creator_suffixes = [self.factory_token, *DEFAULT_CREATOR_SUFFIXES]

    @property
    def src_path(self) -> Path:
        return self.project_root / self.src_dir

    @property
    def state_dir(self) -> Path:
        return self.project_root / STATE_DIR

    @property
    def index_path(self) -> Path:
        return self.state_dir / "method-index.json"

    @property
    def annotation_cache_path(self) -> Path:
        return self.state_dir / "annotation-cache.json"

    @property
    def work_dir(self) -> Path:
        return self.state_dir / "work"

    def to_dict(self) -> dict:
        return {
            "projectRoot": str(self.project_root),
            "srcPath": self.src_dir,
            "extensions": self.extensions,
            "ignoreDirs": self.ignore_dirs,
            "factoryToken": self.factory_token,
            "creatorSuffixes": self.creator_suffixes,
            "roleRules": [list(rule) for rule in self.role_rules],
            "docLookback": self.doc_lookback,
            "maxFileSize": self.max_file_size,
        }


def detect_source_dir(project_root: Path) -> str:
    """src/ if present, else lib/, else src"""
    for candidate in ("src", "lib"):
        if (project_root / candidate).is_dir():
            return candidate
    return "src"


def resolve_project_root(project_root: Optional[Union[str, Path]] = None) -> Path:
    if project_root:
        return Path(project_root).resolve()
    env_path = os.environ.get(ENV_PROJECT_PATH)
    if env_path:
        return Path(env_path).resolve()
    return Path.cwd().resolve()


def _read_overrides(config_file: Path) -> dict:
    if not config_file.exists():
        return {}
    try:
        data = json.loads(config_file.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Invalid config file %s, using defaults: %s", config_file, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Config file %s is not a JSON object, using defaults", config_file)
        return {}
    return data


def load_config(project_root: Optional[Union[str, Path]] = None) -> CartographConfig:
    """Resolve the project root and merge .cartograph/config.json over the defaults."""
    root = resolve_project_root(project_root)
    overrides = _read_overrides(root / STATE_DIR / CONFIG_FILE)

    kwargs = {
        "project_root": root,
        "src_dir": overrides.get("srcPath") or detect_source_dir(root),
    }
    simple_keys = {
        "extensions": "extensions",
        "ignoreDirs": "ignore_dirs",
        "factoryToken": "factory_token",
        "creatorSuffixes": "creator_suffixes",
        "docLookback": "doc_lookback",
        "maxFileSize": "max_file_size",
    }
    for json_key, attr in simple_keys.items():
        if json_key in overrides:
            kwargs[attr] = overrides[json_key]
    if "roleRules" in overrides:
        kwargs["role_rules"] = [(pattern, role) for pattern, role in overrides["roleRules"]]

    config = CartographConfig(**kwargs)
    logger.debug("Loaded config for %s (src: %s)", config.project_root, config.src_dir)
    return config
