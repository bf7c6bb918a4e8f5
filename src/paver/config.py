from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, time
import logging
from pathlib import Path
from typing import TypeAlias
import tomllib

from paver.exceptions import ConfigError
from paver.model import Diagnostic, DocType, Severity

DEFAULT_CONFIG_NAME = ".pave.toml"
DEFAULT_DOCS_ROOT = "docs"
DEFAULT_MAX_LINES = 300
DEFAULT_VERIFICATION_TIMEOUT = 30.0
BUILTIN_EXCLUDES: tuple[str, ...] = (
    "target/",
    "node_modules/",
    "dist/",
    "__pycache__/",
    ".git/",
)

TomlScalar: TypeAlias = str | int | float | bool | None | date | datetime | time
TomlValue: TypeAlias = TomlScalar | list["TomlValue"] | dict[str, "TomlValue"]
TomlTable: TypeAlias = dict[str, TomlValue]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TypeSpecificRules:
    runbooks: bool = False
    adrs: bool = False
    components: bool = False

    def enabled_for(self, doc_type: DocType) -> bool:
        if doc_type is DocType.RUNBOOK:
            return self.runbooks
        if doc_type is DocType.ADR:
            return self.adrs
        if doc_type is DocType.COMPONENT:
            return self.components
        return False


@dataclass(frozen=True)
class RulesConfig:
    max_lines: int = DEFAULT_MAX_LINES
    require_verification: bool = True
    require_examples: bool = True
    require_verification_commands: bool = True
    strict_output_matching: bool = False
    skip_output_matching: bool = False
    validate_paths: bool = False
    warn_empty_paths: bool = False
    gradual: bool = False
    gradual_until: date | None = None
    verification_timeout: float = DEFAULT_VERIFICATION_TIMEOUT
    type_specific: TypeSpecificRules = field(default_factory=TypeSpecificRules)


@dataclass(frozen=True)
class PaverConfig:
    """Resolved, immutable configuration for one invocation."""

    repo_root: Path
    config_path: Path | None
    docs_root: Path
    rules: RulesConfig = field(default_factory=RulesConfig)
    mapping_exclude: tuple[str, ...] = BUILTIN_EXCLUDES
    version: str | None = None

    @property
    def gradual(self) -> bool:
        return self.rules.gradual

    @property
    def docs_root_rel(self) -> str:
        try:
            return self.docs_root.relative_to(self.repo_root).as_posix()
        except ValueError:
            return self.docs_root.as_posix()


@dataclass(frozen=True)
class CliOverrides:
    """Per-invocation flag values; ``None`` means the flag was not given."""

    docs_root: str | None = None
    max_lines: int | None = None
    require_verification: bool | None = None
    require_examples: bool | None = None
    require_verification_commands: bool | None = None
    strict_output_matching: bool | None = None
    skip_output_matching: bool | None = None
    validate_paths: bool | None = None
    warn_empty_paths: bool | None = None
    gradual: bool | None = None
    verification_timeout: float | None = None
    strict: bool = False


@dataclass(frozen=True)
class ResolvedConfig:
    config: PaverConfig
    notices: tuple[Diagnostic, ...] = ()


def find_config_path(start: Path) -> Path | None:
    base = start.resolve()
    for directory in (base, *base.parents):
        candidate = directory / DEFAULT_CONFIG_NAME
        if candidate.is_file():
            return candidate
    return None


def _load_toml(path: Path) -> TomlTable:
    try:
        raw = path.read_text(encoding="utf-8")
    except (OSError, UnicodeError) as exc:
        raise ConfigError(f"cannot read config: {exc}", path=path) from exc
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"malformed TOML: {exc}", path=path) from exc
    return data


def _section(table: TomlTable, name: str, *, path: Path | None) -> TomlTable:
    section = table.get(name, {})
    if not isinstance(section, dict):
        raise ConfigError(f"invalid [{name}]: expected a table", path=path)
    return section


def _as_bool(value: TomlValue, *, field_name: str, path: Path | None) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    raise ConfigError(f"invalid {field_name}: expected bool", path=path)


def _as_positive_int(value: TomlValue, *, field_name: str, path: Path | None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"invalid {field_name}: expected int", path=path)
    if value <= 0:
        raise ConfigError(f"invalid {field_name}: must be positive", path=path)
    return value


def _as_positive_float(value: TomlValue, *, field_name: str, path: Path | None) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"invalid {field_name}: expected number", path=path)
    if value <= 0:
        raise ConfigError(f"invalid {field_name}: must be positive", path=path)
    return float(value)


def _as_str(value: TomlValue, *, field_name: str, path: Path | None) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"invalid {field_name}: expected non-empty string", path=path)
    return value.strip()


def _as_date(value: TomlValue, *, field_name: str, path: Path | None) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError as exc:
            raise ConfigError(
                f"invalid {field_name}: {value!r} is not a valid calendar date (YYYY-MM-DD)",
                path=path,
            ) from exc
    raise ConfigError(f"invalid {field_name}: expected a date", path=path)


def _normalize_name_list(value: TomlValue, *, field_name: str, path: Path | None) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, list):
        items: list[str] = []
        for item in value:
            if not isinstance(item, str):
                raise ConfigError(f"invalid {field_name}: expected list of strings", path=path)
            if item.strip():
                items.append(item.strip())
        return items
    raise ConfigError(f"invalid {field_name}: expected list of strings", path=path)


_BOOL_RULE_KEYS = (
    "require_verification",
    "require_examples",
    "require_verification_commands",
    "strict_output_matching",
    "skip_output_matching",
    "validate_paths",
    "warn_empty_paths",
    "gradual",
)


def _rules_from_table(rules_table: TomlTable, *, path: Path | None) -> RulesConfig:
    values: dict[str, object] = {}
    for key in _BOOL_RULE_KEYS:
        if key in rules_table:
            values[key] = _as_bool(rules_table[key], field_name=f"rules.{key}", path=path)
    if "max_lines" in rules_table:
        values["max_lines"] = _as_positive_int(
            rules_table["max_lines"], field_name="rules.max_lines", path=path
        )
    if "verification_timeout" in rules_table:
        values["verification_timeout"] = _as_positive_float(
            rules_table["verification_timeout"],
            field_name="rules.verification_timeout",
            path=path,
        )
    if "gradual_until" in rules_table:
        values["gradual_until"] = _as_date(
            rules_table["gradual_until"], field_name="rules.gradual_until", path=path
        )
    type_table = rules_table.get("type_specific", {})
    if not isinstance(type_table, dict):
        raise ConfigError("invalid [rules.type_specific]: expected a table", path=path)
    type_values = {
        key: _as_bool(type_table[key], field_name=f"rules.type_specific.{key}", path=path)
        for key in ("runbooks", "adrs", "components")
        if key in type_table
    }
    values["type_specific"] = TypeSpecificRules(**type_values)
    unknown = set(rules_table) - set(_BOOL_RULE_KEYS) - {
        "max_lines",
        "verification_timeout",
        "gradual_until",
        "type_specific",
    }
    for key in sorted(unknown):
        logger.debug("ignoring unknown config key rules.%s", key)
    return RulesConfig(**values)


def merge_overrides(rules: RulesConfig, overrides: CliOverrides) -> RulesConfig:
    changes: dict[str, object] = {}
    for key in (*_BOOL_RULE_KEYS, "max_lines", "verification_timeout"):
        value = getattr(overrides, key)
        if value is None:
            continue
        changes[key] = value
    return replace(rules, **changes) if changes else rules


def resolve_config(
    table: TomlTable,
    overrides: CliOverrides,
    *,
    today: date,
    start: Path,
    config_path: Path | None = None,
) -> ResolvedConfig:
    """Build the invocation config from file contents, flags and today's date.

    Precedence is flag > file > default. ``gradual`` is cleared when
    ``gradual_until`` lies before ``today`` and a notice is attached;
    ``strict`` then clears it unconditionally.
    """
    pave = _section(table, "pave", path=config_path)
    docs = _section(table, "docs", path=config_path)
    rules_table = _section(table, "rules", path=config_path)
    mapping = _section(table, "mapping", path=config_path)

    version = None
    if "version" in pave:
        version = _as_str(pave["version"], field_name="pave.version", path=config_path)

    repo_root = config_path.parent if config_path is not None else start
    docs_root_text = DEFAULT_DOCS_ROOT
    if "root" in docs:
        docs_root_text = _as_str(docs["root"], field_name="docs.root", path=config_path)
    if overrides.docs_root is not None:
        docs_root_text = overrides.docs_root

    rules = merge_overrides(_rules_from_table(rules_table, path=config_path), overrides)

    user_excludes = _normalize_name_list(
        mapping.get("exclude"), field_name="mapping.exclude", path=config_path
    )
    excludes = list(BUILTIN_EXCLUDES)
    for item in user_excludes:
        if item not in excludes:
            excludes.append(item)

    notices: list[Diagnostic] = []
    if rules.gradual and rules.gradual_until is not None and rules.gradual_until < today:
        rules = replace(rules, gradual=False)
        notices.append(
            Diagnostic.create(
                path=None,
                rule="gradual-expired",
                message=(
                    f"gradual mode expired on {rules.gradual_until.isoformat()}; "
                    "violations are enforced as errors"
                ),
                severity=Severity.NOTICE,
            )
        )
    if overrides.strict and rules.gradual:
        rules = replace(rules, gradual=False)

    config = PaverConfig(
        repo_root=repo_root,
        config_path=config_path,
        docs_root=repo_root / docs_root_text,
        rules=rules,
        mapping_exclude=tuple(excludes),
        version=version,
    )
    return ResolvedConfig(config=config, notices=tuple(notices))


def load_config(
    start: Path | None = None,
    overrides: CliOverrides | None = None,
    *,
    today: date | None = None,
    config_path: Path | None = None,
    require_docs_root: bool = True,
) -> ResolvedConfig:
    base = (start if start is not None else Path.cwd()).resolve()
    if config_path is None:
        config_path = find_config_path(base)
    elif not config_path.is_file():
        raise ConfigError("config file not found", path=config_path)
    if config_path is not None:
        config_path = config_path.resolve()
        logger.info("using config %s", config_path)
        table = _load_toml(config_path)
    else:
        logger.info("no %s found above %s; using defaults", DEFAULT_CONFIG_NAME, base)
        table = {}
    resolved = resolve_config(
        table,
        overrides or CliOverrides(),
        today=today if today is not None else date.today(),
        start=base,
        config_path=config_path,
    )
    docs_root = resolved.config.docs_root
    if require_docs_root and not docs_root.is_dir():
        raise ConfigError(f"docs root does not exist: {docs_root}", path=config_path)
    return resolved


def config_items(config: PaverConfig) -> list[tuple[str, object]]:
    rules = config.rules
    items: list[tuple[str, object]] = [
        ("pave.version", config.version),
        ("docs.root", config.docs_root_rel),
        ("rules.max_lines", rules.max_lines),
        ("rules.require_verification", rules.require_verification),
        ("rules.require_examples", rules.require_examples),
        ("rules.require_verification_commands", rules.require_verification_commands),
        ("rules.strict_output_matching", rules.strict_output_matching),
        ("rules.skip_output_matching", rules.skip_output_matching),
        ("rules.validate_paths", rules.validate_paths),
        ("rules.warn_empty_paths", rules.warn_empty_paths),
        ("rules.gradual", rules.gradual),
        (
            "rules.gradual_until",
            rules.gradual_until.isoformat() if rules.gradual_until is not None else None,
        ),
        ("rules.verification_timeout", rules.verification_timeout),
        ("rules.type_specific.runbooks", rules.type_specific.runbooks),
        ("rules.type_specific.adrs", rules.type_specific.adrs),
        ("rules.type_specific.components", rules.type_specific.components),
        ("mapping.exclude", list(config.mapping_exclude)),
    ]
    return items


def config_value(config: PaverConfig, key: str) -> object:
    for name, value in config_items(config):
        if name == key:
            return value
    raise ConfigError(f"unknown config key: {key}")
