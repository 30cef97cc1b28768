"""ragkb configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site, not in this module)
  2. Environment variables  (RAGKB_EMBEDDING_MODEL, RAGKB_GENERATION_MODEL, RAGKB_LOCK_FILE)
  3. Per-project ragkb.yaml  (current working directory)
  4. Global ~/.ragkb/config.yaml  (no API keys)
  5. Hardcoded defaults

Credentials are never read from config files; each capability names the
environment variable that holds its key.
All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from ragkb.errors import ConfigurationError

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".ragkb"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "ragkb.yaml"

# Matches api_key, apikey, api-key, api_secret, *_token, token, *_secret,
# secret, password, passwd, credential(s). Does NOT match max_tokens.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    [
        "targets",
        "default_target",
        "vector_store",
        "ingest",
        "embedding",
        "generation",
        "retrieval",
        "chunker",
        "backup",
    ]
)

_TARGET_NAME_RE: re.Pattern[str] = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_\-]*$")
_TAG_MATCH_MODES: frozenset[str] = frozenset(["substring", "exact"])


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class TargetCfg:
    """One isolated persistence scope (ragkb.yaml: targets.<name>:)."""

    name: str
    database: Path
    archive: Path
    collection: str = ""

    def __post_init__(self) -> None:
        if not self.collection:
            self.collection = self.name


@dataclass
class VectorStoreCfg:
    """Vector index location (ragkb.yaml: vector_store:)."""

    path: Path = field(default_factory=lambda: Path("vectors.db"))
    upsert_batch_size: int = 100


@dataclass
class IngestCfg:
    """Ingestion coordination (ragkb.yaml: ingest:).

    Attributes:
        lock_file: Advisory lease file shared by every ingesting process.
        lock_stale_minutes: Age after which a lease is reclaimable.
        default_targets: Targets used when ``--targets`` is not given.
        reference_target: Target whose tag vocabulary feeds the classifier.
        classify: Run LLM auto-tagging.
    """

    lock_file: Path = field(default_factory=lambda: _GLOBAL_CONFIG_DIR / "ingest.lock")
    lock_stale_minutes: float = 15.0
    default_targets: list[str] = field(default_factory=list)
    reference_target: str | None = None
    classify: bool = True


@dataclass
class EmbeddingCfg:
    """Embedding capabilities in priority order (ragkb.yaml: embedding:)."""

    models: list[str] = field(
        default_factory=lambda: [
            "gemini/gemini-embedding-001",
            "openai/text-embedding-3-small",
        ]
    )
    batch_size: int = 10
    cache_size: int = 1000
    max_attempts: int = 3
    backoff_base: float = 1.0
    batch_delay: float = 0.2


@dataclass
class GenerationCfg:
    """Completion capabilities in priority order (ragkb.yaml: generation:)."""

    models: list[str] = field(
        default_factory=lambda: [
            "gemini/gemini-2.0-flash",
            "openai/gpt-4o-mini",
            "openrouter/meta-llama/llama-3.3-70b-instruct:free",
        ]
    )
    max_attempts: int = 3
    backoff_base: float = 1.0
    max_tokens: int = 2048


@dataclass
class RetrievalCfg:
    """Query-time retrieval (ragkb.yaml: retrieval:)."""

    top_k: int = 10
    tag_match: str = "substring"  # substring | exact


@dataclass
class ChunkerCfg:
    """Sentence chunker sizes in characters (ragkb.yaml: chunker:)."""

    max_chars: int = 800
    overlap_chars: int = 200
    min_chars: int = 100


@dataclass
class BackupCfg:
    """Snapshot destination for `ragkb backup` (ragkb.yaml: backup:)."""

    directory: Path = field(default_factory=lambda: _GLOBAL_CONFIG_DIR / "backups")


@dataclass
class RagKbConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    targets: dict[str, TargetCfg] = field(default_factory=dict)
    default_target: str = ""
    vector_store: VectorStoreCfg = field(default_factory=VectorStoreCfg)
    ingest: IngestCfg = field(default_factory=IngestCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    generation: GenerationCfg = field(default_factory=GenerationCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    chunker: ChunkerCfg = field(default_factory=ChunkerCfg)
    backup: BackupCfg = field(default_factory=BackupCfg)

    def target(self, name: str) -> TargetCfg:
        """Return the target called *name*.

        Raises:
            ConfigurationError: If no such target is configured.
        """
        try:
            return self.targets[name]
        except KeyError:
            known = ", ".join(sorted(self.targets)) or "(none)"
            raise ConfigurationError(
                f"Unknown target '{name}'. Configured targets: {known}"
            ) from None

    def resolve_targets(self, names: list[str] | None) -> list[TargetCfg]:
        """Resolve requested target names (order kept, duplicates dropped).

        Falls back to ``ingest.default_targets``, then ``default_target``.
        """
        requested = names or self.ingest.default_targets or [self.default_target]
        seen: list[str] = []
        for name in requested:
            if name not in seen:
                seen.append(name)
        return [self.target(n) for n in seen]


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigurationError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else str(k)
                if _API_KEY_RE.search(str(k)):
                    raise ConfigurationError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' (ignored).",
                UserWarning,
                stacklevel=4,
            )


def _expand(path: str | Path, base: Path) -> Path:
    p = Path(os.path.expanduser(str(path)))
    return p if p.is_absolute() else base / p


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _parse_targets(raw: dict[str, Any], base: Path) -> dict[str, TargetCfg]:
    targets: dict[str, TargetCfg] = {}
    for name, t in raw.items():
        name = str(name)
        if not _TARGET_NAME_RE.match(name):
            raise ConfigurationError(
                f"Invalid target name '{name}'. Use letters, digits, '-' and '_' only."
            )
        t = t or {}
        targets[name] = TargetCfg(
            name=name,
            database=_expand(t.get("database", f"{name}/knowledge_base.db"), base),
            archive=_expand(t.get("archive", f"{name}/storage"), base),
            collection=str(t.get("collection", name)),
        )
    return targets


def _str_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [str(v) for v in value]


def _cfg_from_dict(data: dict[str, Any], base: Path) -> RagKbConfig:
    """Build a *RagKbConfig* from a merged raw YAML dict."""
    cfg = RagKbConfig()

    if "targets" in data and data["targets"]:
        cfg.targets = _parse_targets(data["targets"], base)
    else:
        cfg.targets = {
            "default": TargetCfg(
                name="default",
                database=base / "knowledge_base.db",
                archive=base / "storage",
            )
        }

    cfg.default_target = str(data.get("default_target") or next(iter(cfg.targets)))

    if "vector_store" in data:
        v = data["vector_store"]
        cfg.vector_store = VectorStoreCfg(
            path=_expand(v.get("path", cfg.vector_store.path), base),
            upsert_batch_size=int(
                v.get("upsert_batch_size", cfg.vector_store.upsert_batch_size)
            ),
        )
    else:
        cfg.vector_store.path = base / cfg.vector_store.path

    if "ingest" in data:
        i = data["ingest"]
        cfg.ingest = IngestCfg(
            lock_file=_expand(i.get("lock_file", cfg.ingest.lock_file), base),
            lock_stale_minutes=float(
                i.get("lock_stale_minutes", cfg.ingest.lock_stale_minutes)
            ),
            default_targets=_str_list(i.get("default_targets", [])),
            reference_target=i.get("reference_target"),
            classify=bool(i.get("classify", cfg.ingest.classify)),
        )

    if "embedding" in data:
        e = data["embedding"]
        cfg.embedding = EmbeddingCfg(
            models=_str_list(e.get("models", cfg.embedding.models)),
            batch_size=int(e.get("batch_size", cfg.embedding.batch_size)),
            cache_size=int(e.get("cache_size", cfg.embedding.cache_size)),
            max_attempts=int(e.get("max_attempts", cfg.embedding.max_attempts)),
            backoff_base=float(e.get("backoff_base", cfg.embedding.backoff_base)),
            batch_delay=float(e.get("batch_delay", cfg.embedding.batch_delay)),
        )

    if "generation" in data:
        g = data["generation"]
        cfg.generation = GenerationCfg(
            models=_str_list(g.get("models", cfg.generation.models)),
            max_attempts=int(g.get("max_attempts", cfg.generation.max_attempts)),
            backoff_base=float(g.get("backoff_base", cfg.generation.backoff_base)),
            max_tokens=int(g.get("max_tokens", cfg.generation.max_tokens)),
        )

    if "retrieval" in data:
        r = data["retrieval"]
        cfg.retrieval = RetrievalCfg(
            top_k=int(r.get("top_k", cfg.retrieval.top_k)),
            tag_match=str(r.get("tag_match", cfg.retrieval.tag_match)),
        )
        if cfg.retrieval.tag_match not in _TAG_MATCH_MODES:
            raise ConfigurationError(
                f"retrieval.tag_match must be one of "
                f"{', '.join(sorted(_TAG_MATCH_MODES))}, got '{cfg.retrieval.tag_match}'"
            )

    if "chunker" in data:
        c = data["chunker"]
        cfg.chunker = ChunkerCfg(
            max_chars=int(c.get("max_chars", cfg.chunker.max_chars)),
            overlap_chars=int(c.get("overlap_chars", cfg.chunker.overlap_chars)),
            min_chars=int(c.get("min_chars", cfg.chunker.min_chars)),
        )

    if "backup" in data:
        cfg.backup = BackupCfg(
            directory=_expand(data["backup"].get("directory", cfg.backup.directory), base)
        )

    if cfg.default_target not in cfg.targets:
        raise ConfigurationError(
            f"default_target '{cfg.default_target}' is not a configured target."
        )
    return cfg


def _apply_env_overrides(cfg: RagKbConfig) -> RagKbConfig:
    """Apply RAGKB_* environment variable overrides (layer 2).

    Model overrides are prepended so they become the first capability tried.
    """
    if model := os.environ.get("RAGKB_EMBEDDING_MODEL"):
        cfg.embedding.models = [model] + [m for m in cfg.embedding.models if m != model]
    if model := os.environ.get("RAGKB_GENERATION_MODEL"):
        cfg.generation.models = [model] + [m for m in cfg.generation.models if m != model]
    if lock_file := os.environ.get("RAGKB_LOCK_FILE"):
        cfg.ingest.lock_file = Path(os.path.expanduser(lock_file))
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> RagKbConfig:
    """Load and return a merged *RagKbConfig*.

    Applies layers in order: global → per-project → env vars.
    Relative paths in the config resolve against *project_dir*.

    Args:
        project_dir: Directory to search for *ragkb.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigurationError: If global config contains API-key-like fields, a
            target name is invalid, or ``default_target`` is unknown.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged, search_dir.resolve())
    return _apply_env_overrides(cfg)
