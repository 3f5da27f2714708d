"""Reading and writing Cask.toml manifests."""

from __future__ import annotations

import json
import tomllib
from pathlib import Path
from typing import Any

from kegbin.core.errors import ManifestError
from kegbin.core.models import (
    OS,
    Arch,
    CaskRecord,
    DetailedTarget,
    Formula,
    Hook,
    HookDefinition,
    PackageInfo,
    ResourceTarget,
    SimpleTarget,
    Terminal,
)

MANIFEST_FILENAME = "Cask.toml"

HOOK_SECTIONS = ("windows", "unix", "linux", "macos", "freebsd")

CASK_HEADER = "# The file is generated by kegbin. DO NOT MODIFY IT."


def _require_str(table: dict[str, Any], key: str, where: str) -> str:
    value = table.get(key)
    if not isinstance(value, str):
        raise ManifestError(
            f"'{where}.{key}' must be a string",
            context={"field": f"{where}.{key}"}
        )
    return value


def _optional_str(table: dict[str, Any], key: str, where: str) -> str | None:
    if table.get(key) is None:
        return None
    return _require_str(table, key, where)


def _optional_str_list(table: dict[str, Any], key: str, where: str) -> tuple[str, ...] | None:
    value = table.get(key)
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ManifestError(
            f"'{where}.{key}' must be a list of strings",
            context={"field": f"{where}.{key}"}
        )
    return tuple(value)


def _table(doc: dict[str, Any], key: str, where: str | None = None) -> dict[str, Any] | None:
    value = doc.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        name = f"{where}.{key}" if where else key
        raise ManifestError(f"'{name}' must be a table", context={"field": name})
    return value


def _require_bin_name(table: dict[str, Any]) -> str:
    """The executable name becomes a file name in the store, never a path."""
    value = _require_str(table, "bin", "package")
    if not value or value in (".", "..") or "/" in value or "\\" in value or ":" in value:
        raise ManifestError(
            f"'package.bin' must be a plain file name, got '{value}'",
            context={"field": "package.bin"}
        )
    return value


def parse_package(table: dict[str, Any]) -> PackageInfo:
    return PackageInfo(
        name=_require_str(table, "name", "package"),
        bin=_require_bin_name(table),
        repository=_require_str(table, "repository", "package"),
        description=_optional_str(table, "description", "package") or "",
        versions=_optional_str_list(table, "versions", "package"),
        authors=_optional_str_list(table, "authors", "package") or (),
        keywords=_optional_str_list(table, "keywords", "package"),
        license=_optional_str(table, "license", "package"),
        homepage=_optional_str(table, "homepage", "package"),
    )


def parse_resource(value: Any, where: str) -> ResourceTarget:
    """A resource is either a bare URL string or a table with ``url``."""
    if isinstance(value, str):
        return SimpleTarget(url=value)
    if isinstance(value, dict):
        executable = value.get("executable", False)
        if not isinstance(executable, bool):
            raise ManifestError(
                f"'{where}.executable' must be a boolean",
                context={"field": f"{where}.executable"}
            )
        return DetailedTarget(
            url=_require_str(value, "url", where),
            checksum=_optional_str(value, "checksum", where),
            extension=_optional_str(value, "extension", where),
            path=_optional_str(value, "path", where),
            executable=executable,
        )
    raise ManifestError(
        f"'{where}' must be a URL string or a table",
        context={"field": where}
    )


def parse_platforms(doc: dict[str, Any]) -> dict[OS, dict[Arch, ResourceTarget]]:
    platforms: dict[OS, dict[Arch, ResourceTarget]] = {}
    for os_ in OS:
        table = _table(doc, os_.value)
        if table is None:
            continue
        targets: dict[Arch, ResourceTarget] = {}
        for arch in Arch:
            if table.get(arch.value) is not None:
                targets[arch] = parse_resource(table[arch.value], f"{os_.value}.{arch.value}")
        platforms[os_] = targets
    return platforms


def parse_hook(table: dict[str, Any]) -> Hook:
    sections: dict[str, dict[Terminal, HookDefinition]] = {}
    for section in HOOK_SECTIONS:
        terminals = _table(table, section, "hook")
        if terminals is None:
            continue
        definitions: dict[Terminal, HookDefinition] = {}
        for terminal in Terminal:
            where = f"hook.{section}"
            scripts = _table(terminals, terminal.value, where)
            if scripts is None:
                continue
            where = f"{where}.{terminal.value}"
            definitions[terminal] = HookDefinition(
                preinstall=_optional_str(scripts, "preinstall", where),
                postinstall=_optional_str(scripts, "postinstall", where),
            )
        sections[section] = definitions
    return Hook(sections=sections)


def parse_cask(table: dict[str, Any]) -> CaskRecord:
    return CaskRecord(
        name=_require_str(table, "name", "cask"),
        created_at=_require_str(table, "created_at", "cask"),
        version=_require_str(table, "version", "cask"),
        repository=_require_str(table, "repository", "cask"),
    )


def parse_formula(
    content: bytes,
    repository: str = "",
    filepath: Path | None = None,
) -> Formula:
    """Parse manifest bytes into a Formula.

    Args:
        content: Raw TOML bytes, kept verbatim on the result.
        repository: The repository URL the manifest was fetched from.
        filepath: Where the manifest lives on disk, if anywhere.

    Raises:
        ManifestError: If the bytes are not valid TOML or break the schema.
    """
    try:
        doc = tomllib.loads(content.decode("utf-8"))
    except (UnicodeDecodeError, tomllib.TOMLDecodeError) as e:
        raise ManifestError(
            f"Can not parse formula: {e}",
            context={"path": str(filepath)} if filepath else None
        ) from e

    package = _table(doc, "package")
    if package is None:
        raise ManifestError("The formula has no [package] table", context={"field": "package"})

    hook = _table(doc, "hook")
    cask = _table(doc, "cask")

    return Formula(
        package=parse_package(package),
        platforms=parse_platforms(doc),
        dependencies=_table(doc, "dependencies") or {},
        hook=parse_hook(hook) if hook is not None else None,
        cask=parse_cask(cask) if cask is not None else None,
        repository=repository,
        file_content=content,
        filepath=filepath,
    )


def read_formula(path: Path, repository: str = "") -> Formula:
    """Read and parse a manifest file."""
    try:
        content = path.read_bytes()
    except FileNotFoundError as e:
        raise ManifestError("The formula does not exist", context={"path": str(path)}) from e
    except OSError as e:
        raise ManifestError(f"Can not read formula: {e}", context={"path": str(path)}) from e

    return parse_formula(content, repository=repository, filepath=path)


def _toml_string(value: str) -> str:
    # JSON string escapes are valid TOML basic-string escapes
    return json.dumps(value, ensure_ascii=False)


def render_cask_block(record: CaskRecord) -> str:
    """Render the generated header and ``[cask]`` table."""
    return (
        f"{CASK_HEADER}\n"
        "[cask]\n"
        f"name = {_toml_string(record.name)}\n"
        f"created_at = {_toml_string(record.created_at)}\n"
        f"version = {_toml_string(record.version)}\n"
        f"repository = {_toml_string(record.repository)}\n"
        "\n"
    )


def stamp_manifest(record: CaskRecord, content: bytes) -> bytes:
    """Prefix the original manifest bytes with the cask block."""
    return render_cask_block(record).encode("utf-8") + content
