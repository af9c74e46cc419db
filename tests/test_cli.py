from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from scripts import rebuild_tenant_schemas, run_tenant_migrations
from tenancy.errors import SchemaRebuildNotAllowedError, TenantNotFoundError
from tenancy.schema_migrations.runner import MigrationSweepResult, TenantSchemaStatus


@dataclass
class StubRunner:
    sweep: MigrationSweepResult = field(default_factory=lambda: MigrationSweepResult(success=["acme"], failed=[]))
    calls: list[tuple] = field(default_factory=list)

    def status_report(self):
        return [TenantSchemaStatus("acme", "tenant_acme", True, True, True)]

    def run_for_tenant(self, slug):
        self.calls.append(("run_for_tenant", slug))
        if slug == "ghost":
            raise TenantNotFoundError(f"Tenant {slug!r} not found")
        return [1, 2]

    def apply_to_all_active_tenants(self):
        self.calls.append(("sweep",))
        return self.sweep

    def rebuild_tenant_schema(self, slug):
        self.calls.append(("rebuild", slug))
        return [1]

    def rebuild_all_tenant_schemas(self, *, confirm=None):
        self.calls.append(("rebuild_all", confirm))
        if confirm != "REBUILD-ALL-TENANT-SCHEMAS":
            raise SchemaRebuildNotAllowedError("Confirmation token required")
        return self.sweep


def test_status_only_does_not_migrate(capsys):
    runner = StubRunner()
    args = run_tenant_migrations.parse_args(["--status-only"])

    assert run_tenant_migrations.run(runner, args) == 0
    assert runner.calls == []
    assert "tenant_acme" in capsys.readouterr().out


def test_single_tenant_migration_exit_codes(capsys):
    runner = StubRunner()
    assert run_tenant_migrations.run(runner, run_tenant_migrations.parse_args(["--slug", "acme"])) == 0
    assert "Applied 2 migration(s) to acme" in capsys.readouterr().out

    assert run_tenant_migrations.run(runner, run_tenant_migrations.parse_args(["--slug", "ghost"])) == 1
    assert "Migration failed for ghost" in capsys.readouterr().err


def test_sweep_reports_failures(capsys):
    runner = StubRunner(sweep=MigrationSweepResult(success=["alpha"], failed=["bravo"]))

    assert run_tenant_migrations.run(runner, run_tenant_migrations.parse_args([])) == 1
    captured = capsys.readouterr()
    assert "Migrated: alpha" in captured.out
    assert "Failed: bravo" in captured.err


def test_rebuild_requires_a_target():
    with pytest.raises(SystemExit):
        rebuild_tenant_schemas.parse_args([])
    with pytest.raises(SystemExit):
        rebuild_tenant_schemas.parse_args(["--slug", "acme", "--all"])


def test_rebuild_single_tenant(capsys):
    runner = StubRunner()
    args = rebuild_tenant_schemas.parse_args(["--slug", "acme"])

    assert rebuild_tenant_schemas.run(runner, args, wait_seconds=0) == 0
    assert runner.calls == [("rebuild", "acme")]


def test_rebuild_all_needs_confirmation(capsys):
    runner = StubRunner()
    refused = rebuild_tenant_schemas.parse_args(["--all", "--yes"])
    assert rebuild_tenant_schemas.run(runner, refused) == 2
    assert "Rebuild refused" in capsys.readouterr().err

    confirmed = rebuild_tenant_schemas.parse_args(["--all", "--yes", "--confirm-all", "REBUILD-ALL-TENANT-SCHEMAS"])
    assert rebuild_tenant_schemas.run(runner, confirmed) == 0
    assert "Rebuilt: acme" in capsys.readouterr().out


def test_rebuild_cli_disabled_by_default(monkeypatch, tmp_path, capsys):
    monkeypatch.setattr(rebuild_tenant_schemas, "load_dotenv", lambda: None)
    monkeypatch.delenv("ALLOW_SCHEMA_REBUILD", raising=False)
    monkeypatch.setenv("LOGS_DIR", str(tmp_path))

    assert rebuild_tenant_schemas.main(["--slug", "acme"]) == 2
    assert "Schema rebuild is disabled" in capsys.readouterr().err
