"""Package identity and resolved registry metadata."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from npmsentinel.exceptions import InvalidIdentifierError

# The registry serializes a missing version as this literal in some code paths.
UNDEFINED_VERSION = "undefined"


def is_valid_version(version: str | None) -> bool:
    return bool(version) and version != UNDEFINED_VERSION


@dataclass(frozen=True, order=True)
class PackageIdentifier:
    """``(name, version)`` pair; identity is the canonical ``name@version``."""

    name: str
    version: str

    def __str__(self) -> str:
        return self.canonical

    @property
    def canonical(self) -> str:
        return f"{self.name}@{self.version}"

    @classmethod
    def parse(cls, value: str) -> PackageIdentifier:
        """Parse ``name@version``, including scoped ``@scope/name@version``.

        The separator is the *last* ``@`` after position 0, so the leading
        ``@`` of a scoped name is never mistaken for it.

        Raises :class:`InvalidIdentifierError` when the version is missing,
        empty or the literal ``undefined``.
        """
        text = value.strip()
        idx = text.rfind("@")
        if idx <= 0:
            raise InvalidIdentifierError(value, "missing version")
        name, version = text[:idx], text[idx + 1 :]
        if not name or name == "@":
            raise InvalidIdentifierError(value, "missing name")
        if not is_valid_version(version):
            raise InvalidIdentifierError(value, "missing version")
        return cls(name, version)


def format_identifier(name: str, version: str) -> str:
    """Canonical string for *name* and *version*."""
    return PackageIdentifier(name, version).canonical


def parse_identifier(value: str) -> tuple[str, str]:
    """Inverse of :func:`format_identifier`."""
    ident = PackageIdentifier.parse(value)
    return ident.name, ident.version


@dataclass
class PackageInfo:
    """Resolved package metadata.

    Only ``name`` and ``version`` are guaranteed; everything else degrades
    to ``None`` or an empty mapping when the registry does not supply it
    (or, for pending scans, when the metadata was never retained).
    """

    name: str
    version: str
    published_at: str | None = None
    publisher: str | None = None
    description: str | None = None
    repository: str | None = None
    dependencies: dict[str, str] = field(default_factory=dict)
    dev_dependencies: dict[str, str] = field(default_factory=dict)
    scripts: dict[str, str] = field(default_factory=dict)
    tarball_url: str | None = None

    @property
    def identifier(self) -> PackageIdentifier:
        return PackageIdentifier(self.name, self.version)

    @property
    def package_id(self) -> str:
        return self.identifier.canonical

    @classmethod
    def from_identifier(cls, ident: PackageIdentifier) -> PackageInfo:
        return cls(name=ident.name, version=ident.version)

    @classmethod
    def from_registry(cls, data: dict[str, Any]) -> PackageInfo:
        """Build from a ``GET /{name}/latest`` document.

        The caller is responsible for checking that ``version`` is usable.
        """
        version = str(data.get("version") or "")

        time_info = data.get("time")
        published_at = time_info.get(version) if isinstance(time_info, dict) else None

        publisher = None
        npm_user = data.get("_npmUser")
        if isinstance(npm_user, dict):
            publisher = npm_user.get("name")
        if publisher is None:
            maintainers = data.get("maintainers")
            if isinstance(maintainers, list) and maintainers and isinstance(maintainers[0], dict):
                publisher = maintainers[0].get("name")

        repository = data.get("repository")
        if isinstance(repository, dict):
            repository = repository.get("url")
        if not isinstance(repository, str) or not repository.strip():
            repository = None

        dist = data.get("dist")
        tarball_url = dist.get("tarball") if isinstance(dist, dict) else None
        description = data.get("description")

        return cls(
            name=str(data.get("name") or ""),
            version=version,
            published_at=published_at,
            publisher=publisher,
            description=description if isinstance(description, str) else None,
            repository=repository,
            dependencies=_str_map(data.get("dependencies")),
            dev_dependencies=_str_map(data.get("devDependencies")),
            scripts=_str_map(data.get("scripts")),
            tarball_url=tarball_url,
        )

    def fill_from_manifest(self, manifest: dict[str, Any]) -> PackageInfo:
        """Copy with empty fields filled from the package's own ``package.json``.

        Values already present win; the manifest only supplies gaps.
        """
        parsed = PackageInfo.from_registry(
            {**manifest, "name": self.name, "version": self.version}
        )
        return replace(
            self,
            description=self.description or parsed.description,
            repository=self.repository or parsed.repository,
            dependencies=self.dependencies or parsed.dependencies,
            dev_dependencies=self.dev_dependencies or parsed.dev_dependencies,
            scripts=self.scripts or parsed.scripts,
        )


def _str_map(value: Any) -> dict[str, str]:
    """Coerce a JSON object of strings; anything else becomes empty."""
    if not isinstance(value, dict):
        return {}
    return {str(k): str(v) for k, v in value.items()}
