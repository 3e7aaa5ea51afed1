from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import Mapping

from .errors import InvalidParams

DEFAULT_APP_ROOT = Path("/var/www/html/inventory-ai")
DEFAULT_COLLECTION = "test_performance"
BOOTSTRAP_PATH = "vendor/autoload.php"


class ScenarioKind(str, enum.Enum):
    CONNECTIVITY = "connectivity"
    SINGLE_ROUND_TRIP = "single_round_trip"
    BATCH_ROUND_TRIP = "batch_round_trip"
    RAW_STORE_LOOP = "raw_store_loop"
    LOAD_WORKER = "load_worker"
    LOAD_CLEANUP = "load_cleanup"


# Kinds whose scripts name the records they touch.
RECORD_KINDS = frozenset(
    {
        ScenarioKind.SINGLE_ROUND_TRIP,
        ScenarioKind.BATCH_ROUND_TRIP,
        ScenarioKind.LOAD_WORKER,
        ScenarioKind.LOAD_CLEANUP,
    }
)

_BOOTSTRAP = [
    f"require '{BOOTSTRAP_PATH}';",
    r"use App\Config\MongoDBManager;",
]

_USER_IMPORTS = [
    r"use App\Model\User;",
    r"use App\Repository\UserRepository;",
]

_NEW_USER = (
    "$user = new User($name, $name . '@example.com', "
    "password_hash('test123', PASSWORD_BCRYPT), 'staff');"
)

SCRIPT_TEMPLATES: dict[ScenarioKind, str] = {
    ScenarioKind.CONNECTIVITY: "\n".join(
        [
            *_BOOTSTRAP,
            "MongoDBManager::initialize();",
            "exit(MongoDBManager::ping() ? 0 : 1);",
        ]
    ),
    ScenarioKind.SINGLE_ROUND_TRIP: "\n".join(
        [
            *_BOOTSTRAP,
            *_USER_IMPORTS,
            "MongoDBManager::initialize();",
            "$repo = new UserRepository();",
            "$name = {{name_prefix}};",
            _NEW_USER,
            "$repo->saveUser($user);",
            "$repo->deleteUser($user);",
        ]
    ),
    ScenarioKind.BATCH_ROUND_TRIP: "\n".join(
        [
            *_BOOTSTRAP,
            *_USER_IMPORTS,
            "MongoDBManager::initialize();",
            "$repo = new UserRepository();",
            "$prefix = {{name_prefix}};",
            "for ($i = 0; $i < {{iterations}}; $i++) {",
            "    $name = $prefix . $i;",
            "    " + _NEW_USER,
            "    $repo->saveUser($user);",
            "    $repo->deleteUser($user);",
            "}",
        ]
    ),
    ScenarioKind.RAW_STORE_LOOP: "\n".join(
        [
            *_BOOTSTRAP,
            "MongoDBManager::initialize();",
            "$collection = MongoDBManager::getCollection({{collection}});",
            "for ($i = 0; $i < {{iterations}}; $i++) {",
            "    $result = $collection->insertOne(["
            "'test' => {{name_prefix}}, 'index' => $i, "
            r"'timestamp' => new MongoDB\BSON\UTCDateTime()]);",
            "    $collection->deleteOne(['_id' => $result->getInsertedId()]);",
            "}",
        ]
    ),
    ScenarioKind.LOAD_WORKER: "\n".join(
        [
            *_BOOTSTRAP,
            *_USER_IMPORTS,
            "MongoDBManager::initialize();",
            "$repo = new UserRepository();",
            "$prefix = {{name_prefix}};",
            "for ($j = 0; $j < {{iterations}}; $j++) {",
            "    $name = $prefix . $j;",
            "    " + _NEW_USER,
            "    $repo->saveUser($user);",
            "}",
        ]
    ),
    ScenarioKind.LOAD_CLEANUP: "\n".join(
        [
            *_BOOTSTRAP,
            r"use App\Repository\UserRepository;",
            "MongoDBManager::initialize();",
            "$repo = new UserRepository();",
            "$prefix = {{name_prefix}};",
            "$users = $repo->find(['username' => ['$regex' => '^' . preg_quote($prefix)]]);",
            "foreach ($users as $user) {",
            "    $repo->delete($user['_id']);",
            "}",
        ]
    ),
}

_PLACEHOLDER_RE = re.compile(r"\{\{\s*(\w+)\s*\}\}")
_INCLUDE_RE = re.compile(
    r"\b(?P<stmt>require_once|require|include_once|include)(?P<sep>\s*\(?\s*)'(?P<path>[^']*)'"
)


@dataclass(frozen=True)
class BuildParams:
    iterations: int = 1
    name_prefix: str = "perftest"
    context_dir: Path = DEFAULT_APP_ROOT
    collection: str = DEFAULT_COLLECTION


@dataclass(frozen=True)
class WorkloadScript:
    kind: ScenarioKind
    body: str
    context_dir: Path


def php_literal(value: str) -> str:
    """Quote ``value`` as a PHP single-quoted string literal."""
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def render_template(template: str, values: Mapping[str, str]) -> str:
    """Substitute ``{{name}}`` markers with already-escaped PHP expressions."""

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in values:
            raise InvalidParams(f"template placeholder {key!r} has no value")
        return values[key]

    return _PLACEHOLDER_RE.sub(_replace, template)


def resolve_includes(source: str, context_dir: PurePath) -> str:
    """Rewrite relative require/include paths to absolute ones under ``context_dir``."""

    def _replace(match: re.Match[str]) -> str:
        path = match.group("path")
        if PurePath(path).is_absolute():
            return match.group(0)
        absolute = (PurePath(context_dir) / path).as_posix()
        return f"{match.group('stmt')}{match.group('sep')}{php_literal(absolute)}"

    return _INCLUDE_RE.sub(_replace, source)


def validate_params(kind: ScenarioKind, params: BuildParams) -> None:
    iterations = params.iterations
    if isinstance(iterations, bool) or not isinstance(iterations, int):
        raise InvalidParams(f"iterations must be an integer, got {iterations!r}")
    if iterations < 0:
        raise InvalidParams(f"iterations must be >= 0, got {iterations}")
    if not PurePath(params.context_dir).is_absolute():
        raise InvalidParams(f"context directory must be absolute, got {params.context_dir!s}")
    if kind in RECORD_KINDS and not params.name_prefix:
        raise InvalidParams(f"{kind.value} requires a non-empty name prefix")
    if kind is ScenarioKind.RAW_STORE_LOOP and not params.collection:
        raise InvalidParams("raw_store_loop requires a collection name")
    for field_name in ("name_prefix", "collection"):
        value = getattr(params, field_name)
        if not isinstance(value, str):
            raise InvalidParams(f"{field_name} must be a string, got {value!r}")
        if "\0" in value:
            raise InvalidParams(f"{field_name} must not contain NUL bytes")


def build_script(kind: ScenarioKind | str, params: BuildParams) -> WorkloadScript:
    try:
        kind = ScenarioKind(kind)
    except ValueError as exc:
        raise InvalidParams(f"unknown scenario kind {kind!r}") from exc
    validate_params(kind, params)

    context_dir = Path(params.context_dir)
    template = resolve_includes(SCRIPT_TEMPLATES[kind], context_dir)
    body = render_template(
        template,
        {
            "iterations": str(int(params.iterations)),
            "name_prefix": php_literal(params.name_prefix),
            "collection": php_literal(params.collection),
        },
    )
    return WorkloadScript(kind=kind, body=body, context_dir=context_dir)


def worker_prefix(record_prefix: str, worker: int) -> str:
    return f"{record_prefix}{worker}_"


def load_record_names(
    record_prefix: str, concurrency: int, per_worker_iterations: int
) -> list[str]:
    """Names the load workers create, in worker then iteration order."""
    return [
        f"{worker_prefix(record_prefix, worker)}{index}"
        for worker in range(concurrency)
        for index in range(per_worker_iterations)
    ]


__all__ = [
    "BOOTSTRAP_PATH",
    "BuildParams",
    "DEFAULT_APP_ROOT",
    "ScenarioKind",
    "WorkloadScript",
    "build_script",
    "load_record_names",
    "php_literal",
    "resolve_includes",
    "worker_prefix",
]
