"""
Unit tests for object key resolution.
"""

import pytest

from bucketgate.core.uploads import PathResolver, ProjectContext, resolve_path, sanitize_slug

CTX = ProjectContext(organization_slug="acme", team_slug="web", project_slug="site")


@pytest.fixture
def resolver():
    return PathResolver()


class TestResolve:

    def test_minimal_path(self, resolver):
        assert resolver.resolve(CTX, "avatar.png") == "acme/web/site/avatar.png"

    def test_all_segments_in_fixed_order(self, resolver):
        path = resolver.resolve(
            CTX, "avatar.png", tenant_slug="t1", version="v2", transform="thumb"
        )
        assert path == "acme/web/site/tenants/t1/versions/v2/transforms/thumb/avatar.png"

    def test_omitted_segments_disappear(self, resolver):
        assert resolver.resolve(CTX, "a.txt", version="v3") == "acme/web/site/versions/v3/a.txt"
        assert resolver.resolve(CTX, "a.txt", tenant_slug="t1") == "acme/web/site/tenants/t1/a.txt"

    def test_v1_version_is_kept(self, resolver):
        """An explicit version is always part of the key, v1 included."""
        assert resolver.resolve(CTX, "a.txt", version="v1") == "acme/web/site/versions/v1/a.txt"

    def test_deterministic(self, resolver):
        first = resolver.resolve(CTX, "docs/report.pdf", tenant_slug="t9")
        assert all(
            resolver.resolve(CTX, "docs/report.pdf", tenant_slug="t9") == first
            for _ in range(10)
        )

    def test_nested_file_name_allowed(self, resolver):
        assert resolver.resolve(CTX, "docs/2024/report.pdf") == "acme/web/site/docs/2024/report.pdf"

    def test_module_level_shortcut(self):
        assert resolve_path(CTX, "a.txt", tenant_slug="t1") == "acme/web/site/tenants/t1/a.txt"


class TestResolveValidation:

    @pytest.mark.parametrize("file_name", ["", "   ", "/etc/passwd", "../escape.txt", "a/../b", "a//b"])
    def test_bad_file_names_rejected(self, resolver, file_name):
        with pytest.raises(ValueError):
            resolver.resolve(CTX, file_name)

    def test_segment_with_slash_rejected(self, resolver):
        with pytest.raises(ValueError, match="cannot contain '/'"):
            resolver.resolve(CTX, "a.txt", tenant_slug="evil/../other")

    def test_empty_required_segment_rejected(self, resolver):
        with pytest.raises(ValueError, match="cannot be empty"):
            resolver.resolve(ProjectContext("acme", "", "site"), "a.txt")

    def test_dot_segment_rejected(self, resolver):
        with pytest.raises(ValueError):
            resolver.resolve(CTX, "a.txt", tenant_slug="..")


class TestTransformsAndPrefixes:

    def test_transform_path(self, resolver):
        path = resolver.resolve_transform(CTX, "avatar.png", "thumbnail")
        assert path == "acme/web/site/transforms/thumbnail/avatar-thumbnail.png"

    def test_transform_path_without_extension(self, resolver):
        path = resolver.resolve_transform(CTX, "docs/README", "preview", tenant_slug="t1")
        assert path == "acme/web/site/tenants/t1/transforms/preview/docs/README-preview"

    def test_upload_prefix(self, resolver):
        assert resolver.upload_prefix(CTX) == "acme/web/site"
        assert resolver.upload_prefix(CTX, tenant_slug="t1") == "acme/web/site/tenants/t1"


class TestParse:

    def test_parse_recovers_components(self, resolver):
        path = resolver.resolve(CTX, "docs/a.txt", tenant_slug="t1", version="v2", transform="x")
        parsed = resolver.parse(path)

        assert parsed.organization_slug == "acme"
        assert parsed.team_slug == "web"
        assert parsed.project_slug == "site"
        assert parsed.tenant_slug == "t1"
        assert parsed.version == "v2"
        assert parsed.transform == "x"
        assert parsed.file_name == "docs/a.txt"

    def test_parse_rejects_short_paths(self, resolver):
        assert resolver.parse("acme/web/site") is None

    def test_belongs_to(self, resolver):
        path = resolver.resolve(CTX, "a.txt")
        assert resolver.belongs_to(path, CTX)
        assert not resolver.belongs_to(path, ProjectContext("acme", "web", "other"))


class TestSanitizeSlug:

    @pytest.mark.parametrize("raw, expected", [
        ("My Project", "my-project"),
        ("  --Hello__World--  ", "hello-world"),
        ("Ünïcode", "n-code"),
        ("a" * 80, "a" * 50),
    ])
    def test_sanitize(self, raw, expected):
        assert sanitize_slug(raw) == expected
