"""
Object key generation for multi-tenant buckets.

Several projects can share one bucket, so every key is scoped:

    {org}/{team}/{project}[/tenants/{tenant}][/versions/{version}][/transforms/{transform}]/{file_name}

Segment order never changes and omitted segments disappear entirely.
The same inputs always give the same key, which is what makes upload
ids and confirm retries safe to repeat.
"""

import re
from dataclasses import dataclass
from typing import Optional

from .models import ProjectContext

_SLUG_INVALID = re.compile(r"[^a-z0-9-]")
_SLUG_DASHES = re.compile(r"-+")
_MAX_SLUG_LENGTH = 50


@dataclass(frozen=True)
class ParsedPath:
    """Components recovered from an object key."""
    organization_slug: str
    team_slug: str
    project_slug: str
    file_name: str
    tenant_slug: Optional[str] = None
    version: Optional[str] = None
    transform: Optional[str] = None


def sanitize_slug(value: str) -> str:
    """Lowercase a free-form name into a path-safe slug."""
    slug = _SLUG_INVALID.sub("-", value.lower())
    slug = _SLUG_DASHES.sub("-", slug).strip("-")
    return slug[:_MAX_SLUG_LENGTH]


def _check_segment(name: str, value: str) -> str:
    if not value:
        raise ValueError(f"{name} cannot be empty")
    if "/" in value:
        raise ValueError(f"{name} cannot contain '/': {value!r}")
    if value in (".", ".."):
        raise ValueError(f"{name} cannot be {value!r}")
    return value


def _check_file_name(file_name: str) -> str:
    if not file_name or not file_name.strip():
        raise ValueError("file name cannot be empty")
    if file_name.startswith("/"):
        raise ValueError("file name cannot be an absolute path")
    if any(part in ("", ".", "..") for part in file_name.split("/")):
        raise ValueError(f"file name has an invalid path segment: {file_name!r}")
    return file_name


class PathResolver:
    """
    Builds and parses scoped object keys.

    Stateless; a single instance is shared by every request.
    """

    def resolve(
        self,
        context: ProjectContext,
        file_name: str,
        tenant_slug: Optional[str] = None,
        version: Optional[str] = None,
        transform: Optional[str] = None,
    ) -> str:
        segments = self._prefix_segments(context, tenant_slug, version)
        if transform:
            segments += ["transforms", _check_segment("transform", transform)]
        segments.append(_check_file_name(file_name))
        return "/".join(segments)

    def resolve_transform(
        self,
        context: ProjectContext,
        original_file_name: str,
        transform_id: str,
        tenant_slug: Optional[str] = None,
        version: Optional[str] = None,
    ) -> str:
        """
        Key for a transform result, e.g. thumbnail of avatar.png becomes
        .../transforms/thumbnail/avatar-thumbnail.png
        """
        directory, _, base = original_file_name.rpartition("/")
        dot = base.rfind(".")
        if dot > 0:
            name, ext = base[:dot], base[dot:]
        else:
            name, ext = base, ""
        derived = f"{name}-{transform_id}{ext}"
        if directory:
            derived = f"{directory}/{derived}"
        return self.resolve(
            context,
            derived,
            tenant_slug=tenant_slug,
            version=version,
            transform=transform_id,
        )

    def upload_prefix(
        self,
        context: ProjectContext,
        tenant_slug: Optional[str] = None,
        version: Optional[str] = None,
    ) -> str:
        """Directory under which a project's (or tenant's) uploads live."""
        return "/".join(self._prefix_segments(context, tenant_slug, version))

    def parse(self, path: str) -> Optional[ParsedPath]:
        """
        Recover the components of a key built by resolve().

        Returns None when the key doesn't follow the scoped layout.
        """
        parts = [p for p in path.split("/") if p]
        if len(parts) < 4:
            return None

        org, team, project, rest = parts[0], parts[1], parts[2], parts[3:]
        found: dict[str, Optional[str]] = {"tenants": None, "versions": None, "transforms": None}

        for marker in ("tenants", "versions", "transforms"):
            if len(rest) > 2 and rest[0] == marker:
                found[marker] = rest[1]
                rest = rest[2:]

        if not rest:
            return None

        return ParsedPath(
            organization_slug=org,
            team_slug=team,
            project_slug=project,
            file_name="/".join(rest),
            tenant_slug=found["tenants"],
            version=found["versions"],
            transform=found["transforms"],
        )

    def belongs_to(self, path: str, context: ProjectContext) -> bool:
        """True if the key lives inside the given project's namespace."""
        parsed = self.parse(path)
        if parsed is None:
            return False
        return (
            parsed.organization_slug == context.organization_slug
            and parsed.team_slug == context.team_slug
            and parsed.project_slug == context.project_slug
        )

    def _prefix_segments(
        self,
        context: ProjectContext,
        tenant_slug: Optional[str],
        version: Optional[str],
    ) -> list[str]:
        segments = [
            _check_segment("organization slug", context.organization_slug),
            _check_segment("team slug", context.team_slug),
            _check_segment("project slug", context.project_slug),
        ]
        if tenant_slug:
            segments += ["tenants", _check_segment("tenant slug", tenant_slug)]
        if version:
            segments += ["versions", _check_segment("version", version)]
        return segments


_default_resolver = PathResolver()


def resolve_path(
    context: ProjectContext,
    file_name: str,
    tenant_slug: Optional[str] = None,
    version: Optional[str] = None,
    transform: Optional[str] = None,
) -> str:
    """Module-level shortcut for PathResolver().resolve()."""
    return _default_resolver.resolve(
        context,
        file_name,
        tenant_slug=tenant_slug,
        version=version,
        transform=transform,
    )
