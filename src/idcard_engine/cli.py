"""Typer CLI for IDCard-Engine."""

import asyncio

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(name="idcard", help="IDCard-Engine: student ID card onboarding service")
console = Console()


async def _with_session(work):
    """Open the configured database, run ``work(session)`` in one transaction."""
    from idcard_engine.deps import get_db

    db = get_db()
    await db.init()
    await db.create_all()
    try:
        async with db.get_session() as session:
            return await work(session)
    finally:
        await db.close()


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind host"),
    port: int = typer.Option(8080, help="Bind port"),
):
    """Start the IDCard-Engine API server."""
    import uvicorn
    from idcard_engine.app import create_app

    console.print(f"[bold green]Starting IDCard-Engine on {host}:{port}[/bold green]")
    uvicorn.run(create_app(), host=host, port=port)


@app.command()
def resolve(
    user_id: str = typer.Argument(..., help="Applicant auth user id"),
):
    """Print the applicant's onboarding state and progress."""
    from idcard_engine.deps import get_student_service
    from idcard_engine.eligibility.resolver import evaluate

    async def work(session):
        return await get_student_service().load_snapshot_for_user(session, user_id)

    resolution = evaluate(asyncio.run(_with_session(work)))
    console.print(f"[bold]{resolution.state.value}[/bold] → {resolution.route}")
    for name, reached in resolution.progress.milestones.items():
        mark = "[green]✓[/green]" if reached else "[red]✗[/red]"
        console.print(f"  {mark} {name}")
    console.print(f"  {resolution.progress.percentage:.0f}% complete")


@app.command("verify-audit")
def verify_audit():
    """Verify hashes, linkage and signatures of the whole audit chain."""
    from idcard_engine.deps import get_audit_service

    async def work(session):
        return await get_audit_service().verify_chain(session)

    result = asyncio.run(_with_session(work))
    if result["valid"]:
        console.print(f"[bold green]VALID[/bold green] — {result['events_checked']} actions checked")
    else:
        console.print(
            f"[bold red]BROKEN[/bold red] at {result['break_at']} "
            f"after {result['events_checked']} valid actions"
        )
        raise typer.Exit(1)


@app.command("seed-gateways")
def seed_gateways(
    names: list[str] = typer.Option(None, "--name", help="Gateway to seed (repeatable)"),
    active: str = typer.Option(None, help="Gateway to activate when none is active"),
):
    """Insert missing gateway rows; never changes which gateway is active."""
    from idcard_engine.common.config import get_settings
    from idcard_engine.common.exceptions import IdCardError
    from idcard_engine.deps import get_gateway_service

    names = names or get_settings().default_gateways

    async def work(session):
        return await get_gateway_service().seed_gateways(session, names, active=active)

    try:
        gateways = asyncio.run(_with_session(work))
    except IdCardError as e:
        console.print(f"[bold red]{e.code}[/bold red] — {e.message}")
        raise typer.Exit(1)

    table = Table("gateway", "active")
    for g in gateways:
        table.add_row(g.gateway_name, "yes" if g.is_active else "")
    console.print(table)


@app.command("seed-plans")
def seed_plans():
    """Insert the default plan catalogue; existing plans keep their prices."""
    from idcard_engine.deps import get_plan_service

    async def work(session):
        return await get_plan_service().seed_plans(session)

    plans = asyncio.run(_with_session(work))

    table = Table("code", "price", "physical", "law")
    for p in plans:
        table.add_row(
            p.code, f"{p.price:.2f}", "yes" if p.is_physical else "", "yes" if p.is_law else "",
        )
    console.print(table)


@app.command("create-super-admin")
def create_super_admin(
    auth_user_id: str = typer.Argument(..., help="Auth provider user id"),
    email: str = typer.Argument(..., help="Admin email"),
    full_name: str = typer.Option("", help="Display name"),
):
    """Bootstrap the first super-admin; later admins are created through transitions."""
    from idcard_engine.common.exceptions import IdCardError
    from idcard_engine.deps import get_admin_service

    async def work(session):
        svc = get_admin_service()
        if await svc.get_by_auth_user(session, auth_user_id) is not None:
            raise typer.BadParameter(f"{auth_user_id} already has an admin account")
        return await svc.create_admin(
            session, auth_user_id, email, role="super", full_name=full_name,
        )

    try:
        admin = asyncio.run(_with_session(work))
    except IdCardError as e:
        console.print(f"[bold red]{e.code}[/bold red] — {e.message}")
        raise typer.Exit(1)
    console.print(f"[bold green]Created super-admin[/bold green] {admin.email} ({admin.id})")


@app.command("purge-rejected-documents")
def purge_rejected_documents(
    older_than_days: int = typer.Option(None, help="Retention window in days"),
    limit: int = typer.Option(None, help="Maximum documents per run"),
):
    """Delete rejected documents past the retention window."""
    from idcard_engine.deps import get_student_service

    async def work(session):
        return await get_student_service().purge_rejected_documents(
            session, older_than_days=older_than_days, limit=limit,
        )

    report = asyncio.run(_with_session(work))
    console.print(
        f"Deleted {report['deleted_records']} records, {report['deleted_files']} files"
    )
    for error in report["errors"]:
        console.print(f"  [yellow]{error}[/yellow]")
    if report["errors"]:
        raise typer.Exit(1)


@app.command("add-rejection-reason")
def add_rejection_reason(
    document_type: str = typer.Argument(..., help="rg, endereco, matricula, foto or selfie"),
    reason: str = typer.Argument(..., help="Short reason shown to the applicant"),
    description: str = typer.Option("", help="Longer guidance for reviewers"),
):
    """Add an entry to the rejection reason catalogue."""
    from idcard_engine.common.exceptions import IdCardError
    from idcard_engine.deps import get_student_service

    async def work(session):
        return await get_student_service().create_rejection_reason(
            session, document_type, reason, description=description,
        )

    try:
        row = asyncio.run(_with_session(work))
    except IdCardError as e:
        console.print(f"[bold red]{e.code}[/bold red] — {e.message}")
        raise typer.Exit(1)
    console.print(f"[bold green]Added[/bold green] {row.document_type}: {row.reason} ({row.id})")


@app.command("verify-qr")
def verify_qr(
    payload: str = typer.Argument(..., help="Scanned QR payload"),
):
    """Check a card QR payload offline (HMAC check only)."""
    from idcard_engine.common.config import get_settings
    from idcard_engine.students.card_codes import verify_qr_payload

    if verify_qr_payload(payload, get_settings().hmac_keyring):
        console.print("[bold green]VALID[/bold green]")
    else:
        console.print("[bold red]INVALID[/bold red]")
        raise typer.Exit(1)


@app.command()
def health(
    url: str = typer.Option("http://localhost:8080", help="Server URL"),
):
    """Check IDCard-Engine server health."""
    import httpx

    try:
        resp = httpx.get(f"{url}/health", timeout=5)
        data = resp.json()
        console.print(f"[bold green]{data['status']}[/bold green] — v{data['version']}")
    except (httpx.HTTPError, ValueError, KeyError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
