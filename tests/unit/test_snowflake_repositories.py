"""
Unit tests for the Snowflake repositories.

A scripted fake connection stands in for snowflake-connector: each
execute() pops the next scripted result, so the tests pin down how the
repositories read rowcounts and rows without a database.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from bucketgate.core.errors import ProjectNotFound
from bucketgate.core.limits import LimitKind, RateLimitPolicy, UsageDelta
from bucketgate.core.uploads import ProviderType, UploadStatus
from bucketgate.infrastructure.snowflake.repositories import (
    SnowflakeFileRepository,
    SnowflakeProjectDirectory,
    SnowflakeRateLimiter,
    SnowflakeUploadRepository,
    SnowflakeUsageRepository,
)

NOW = datetime(2024, 5, 1, 12, 0, 5, tzinfo=timezone.utc)


class Result:
    def __init__(self, rowcount=0, rows=None, error=None):
        self.rowcount = rowcount
        self.rows = rows or []
        self.error = error


class FakeCursor:
    def __init__(self, connection):
        self._conn = connection
        self.rowcount = 0
        self._rows = []

    def execute(self, sql, params=None):
        self._conn.executed.append((" ".join(sql.split()), params))
        result = self._conn.script.pop(0) if self._conn.script else Result()
        if result.error:
            raise result.error
        self.rowcount = result.rowcount
        self._rows = list(result.rows)

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return self._rows

    def close(self):
        pass


class FakeConnection:
    def __init__(self, *script):
        self.script = list(script)
        self.executed = []
        self.commits = 0

    def cursor(self):
        return FakeCursor(self)

    def commit(self):
        self.commits += 1


class TestProjectDirectory:

    def test_maps_project_with_bucket(self):
        conn = FakeConnection(Result(rows=[(
            "proj-1", "site", "web", "acme",
            "bucket-1", "r2", "customer-bucket", None, "https://r2.example",
            "v1:enc-a", "v1:enc-s",
        )]))

        project = SnowflakeProjectDirectory(conn).get_project("proj-1")

        assert project.context.organization_slug == "acme"
        assert project.context.team_slug == "web"
        assert project.context.project_slug == "site"
        assert project.credential.provider_type is ProviderType.R2
        assert project.credential.encrypted_access_key == "v1:enc-a"

    def test_project_without_bucket(self):
        conn = FakeConnection(Result(rows=[(
            "proj-1", "site", "web", "acme", None, None, None, None, None, None, None,
        )]))

        assert SnowflakeProjectDirectory(conn).get_project("proj-1").credential is None

    def test_missing_project(self):
        with pytest.raises(ProjectNotFound):
            SnowflakeProjectDirectory(FakeConnection(Result())).get_project("nope")


class TestUploadRepository:

    def test_transition_uses_rowcount(self):
        conn = FakeConnection(Result(rowcount=1), Result(rowcount=0))
        repo = SnowflakeUploadRepository(conn)
        active = (UploadStatus.INIT, UploadStatus.AWAITING_PUT)

        assert repo.transition("u1", active, UploadStatus.CONFIRMED) is True
        assert repo.transition("u1", active, UploadStatus.CONFIRMED) is False

        sql, params = conn.executed[0]
        assert "status IN (%s, %s)" in sql
        assert params == ("confirmed", "u1", "init", "awaiting_put")

    def test_get_parses_variant_metadata(self):
        expires = NOW + timedelta(minutes=15)
        conn = FakeConnection(Result(rows=[(
            "u1", "proj-1", None, "acme/web/site/a.txt", "text/plain",
            "awaiting_put", '{"owner": "7"}', "key-1234", expires, NOW,
        )]))

        session = SnowflakeUploadRepository(conn).get("u1")

        assert session.status is UploadStatus.AWAITING_PUT
        assert session.metadata == {"owner": "7"}
        assert session.expires_at == expires

    def test_get_missing(self):
        assert SnowflakeUploadRepository(FakeConnection(Result())).get("u1") is None

    def test_expire_before_returns_count(self):
        conn = FakeConnection(Result(rowcount=3))
        assert SnowflakeUploadRepository(conn).expire_before(NOW) == 3
        assert conn.commits == 1


class TestFileRepository:

    def _row(self, file_id="f1"):
        return (
            file_id, "proj-1", "t1", "acme/web/site/tenants/t1/a.png", "v1",
            2048, "image/png", '{"upload_id": "u1"}', NOW,
        )

    def test_list_filters_and_pages(self):
        conn = FakeConnection(Result(rows=[self._row("f2"), self._row("f1")]))

        files = SnowflakeFileRepository(conn).list_for_project(
            "proj-1", tenant_id="t1", path_prefix="acme/web/site/", limit=10, offset=20
        )

        assert [f.id for f in files] == ["f2", "f1"]
        assert files[0].size == 2048
        assert files[0].metadata == {"upload_id": "u1"}
        sql, params = conn.executed[0]
        assert "tenant_id = %s" in sql
        assert "STARTSWITH(path, %s)" in sql
        assert "ORDER BY uploaded_at DESC" in sql
        assert params == ("proj-1", "t1", "acme/web/site/", 10, 20)

    def test_list_without_filters(self):
        conn = FakeConnection(Result())

        assert SnowflakeFileRepository(conn).list_for_project("proj-1") == []
        sql, params = conn.executed[0]
        assert "tenant_id" not in sql.split("WHERE")[1]
        assert params == ("proj-1", 50, 0)

    def test_delete_uses_rowcount(self):
        conn = FakeConnection(Result(rowcount=1), Result(rowcount=0))
        repo = SnowflakeFileRepository(conn)

        assert repo.delete("f1") is True
        assert repo.delete("f1") is False
        assert conn.executed[0] == ("DELETE FROM files WHERE file_id = %s", ("f1",))
        assert conn.commits == 2


class TestUsageRepository:

    def test_increment_is_a_single_merge(self):
        conn = FakeConnection()
        SnowflakeUsageRepository(conn).increment(
            "proj-1", date(2024, 5, 1), UsageDelta(uploads=1, bandwidth_bytes=2048)
        )

        assert len(conn.executed) == 1
        sql, params = conn.executed[0]
        assert sql.startswith("MERGE INTO usage_daily")
        assert params == ("proj-1", "2024-05-01", 1, 0, 2048)
        assert conn.commits == 1

    def test_get_range_maps_rows(self):
        conn = FakeConnection(Result(rows=[("proj-1", date(2024, 5, 1), 2, 0, 10**20)]))

        rows = SnowflakeUsageRepository(conn).get_range("proj-1", date(2024, 5, 1), date(2024, 5, 1))

        assert rows[0].bandwidth_bytes == 10**20


class TestRateLimiter:

    def make_limiter(self, conn, fail_open=False):
        return SnowflakeRateLimiter(
            conn,
            RateLimitPolicy(limits={LimitKind.UPLOADS: 2}),
            clock=lambda: NOW,
            fail_open=fail_open,
        )

    def test_admitted_when_update_hits_a_row(self):
        conn = FakeConnection(Result(), Result(rowcount=1), Result(rows=[(1,)]))

        decision = self.make_limiter(conn).check("proj-1", LimitKind.UPLOADS)

        assert decision.allowed
        assert decision.remaining == 1
        window_start = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
        assert conn.executed[1][1] == ("proj-1", "uploads", window_start, 2)

    def test_denied_when_update_hits_nothing(self):
        conn = FakeConnection(Result(), Result(rowcount=0), Result(rows=[(2,)]))

        decision = self.make_limiter(conn).check("proj-1", LimitKind.UPLOADS)

        assert not decision.allowed
        assert decision.retry_after_seconds == 55

    def test_database_errors_fail_closed_by_default(self):
        conn = FakeConnection(Result(error=RuntimeError("warehouse suspended")))

        with pytest.raises(RuntimeError):
            self.make_limiter(conn).check("proj-1", LimitKind.UPLOADS)

    def test_fail_open_admits_on_database_error(self):
        conn = FakeConnection(Result(error=RuntimeError("warehouse suspended")))

        assert self.make_limiter(conn, fail_open=True).allow("proj-1", LimitKind.UPLOADS)

    def test_reset_deletes_row(self):
        conn = FakeConnection()
        self.make_limiter(conn).reset("proj-1", LimitKind.UPLOADS)

        sql, params = conn.executed[0]
        assert sql.startswith("DELETE FROM rate_limit_windows")
        assert params == ("proj-1", "uploads")
