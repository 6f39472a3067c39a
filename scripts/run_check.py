#!/usr/bin/env python3
"""
Run a compliance check (or fix) for one project without starting the API.
Evidence is written to the configured evidence directory as usual.
Usage: python scripts/run_check.py <project_ref> [--fix] [--no-pitr]
"""

import asyncio
import json

import typer

from sccs.client.management import ManagementApiClient
from sccs.engine.orchestrator import ComplianceService
from sccs.schemas.fix import FixRequest
from sccs.storage.evidence import recorder

app = typer.Typer(name="sccs-check", help="Supabase compliance check runner")


async def _run(project_ref: str, token: str, fix: bool, options: FixRequest) -> dict:
    await recorder.ensure_directory()
    async with ManagementApiClient() as api:
        service = ComplianceService(api, recorder)
        if fix:
            result = await service.run_fix(project_ref, token, options)
            return result.model_dump(mode="json", by_alias=True)
        report = await service.run_check(project_ref, token)
        return report.model_dump(mode="json", by_alias=True)


@app.command()
def main(
    project_ref: str = typer.Argument(..., help="Project reference"),
    token: str = typer.Option(..., envvar="SUPABASE_ACCESS_TOKEN", help="Management API token"),
    fix: bool = typer.Option(False, "--fix", help="Apply fixes instead of only checking"),
    mfa: bool = typer.Option(True, "--mfa/--no-mfa", help="Include MFA when fixing"),
    rls: bool = typer.Option(True, "--rls/--no-rls", help="Include RLS when fixing"),
    pitr: bool = typer.Option(True, "--pitr/--no-pitr", help="Include PITR when fixing"),
):
    """Print the compliance report (or fix result) as JSON."""
    options = FixRequest(fix_mfa=mfa, fix_rls=rls, fix_pitr=pitr)
    output = asyncio.run(_run(project_ref, token, fix, options))
    typer.echo(json.dumps(output, indent=2))

    failed = not output["allSuccessful"] if fix else output["summary"]["overallStatus"] == "fail"
    if failed:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
