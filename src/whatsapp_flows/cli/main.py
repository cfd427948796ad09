"""
WhatsApp Flows CLI

Command-line interface for engine administration.

Commands:
- init-db: Create the engine tables
- bind-tenant: Register a tenant's WhatsApp number
- validate-flow: Check a flow document against the graph invariants
- sign-payload: Compute the webhook signature header for a payload file
- list-conversations: List conversations (with flow cursor) for a tenant
- serve: Run the webhook service
"""

import json
from pathlib import Path
from typing import Optional
from uuid import UUID

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="whatsapp-flows",
    help="WhatsApp Flows engine CLI",
)

console = Console()


def get_db():
    """Get database session."""
    from whatsapp_flows.core.db import get_db as _get_db
    return next(_get_db())


def _parse_tenant_id(tenant_id: str) -> UUID:
    try:
        return UUID(tenant_id)
    except ValueError:
        rprint(f"[red]Invalid tenant ID: {tenant_id}[/red]")
        raise typer.Exit(1)


@app.command()
def init_db():
    """
    Create the engine tables (idempotent).
    """
    from whatsapp_flows.core.db import create_tables

    create_tables()
    rprint("[green]Tables created[/green]")


@app.command()
def bind_tenant(
    tenant_id: str = typer.Argument(..., help="Tenant UUID"),
    phone_number_id: str = typer.Argument(..., help="WhatsApp phone number ID (Meta)"),
    display_number: str = typer.Argument(..., help="Display phone number (e.g., +5511999999999)"),
    waba_id: Optional[str] = typer.Option(None, help="WhatsApp Business Account ID"),
    access_token: Optional[str] = typer.Option(None, help="Access token (will be encrypted)"),
    app_secret: Optional[str] = typer.Option(None, help="App secret for webhook signatures (will be encrypted)"),
    verify_token: Optional[str] = typer.Option(None, help="Webhook verify token"),
    webhook_url: Optional[str] = typer.Option(None, help="Webhook URL registered with Meta"),
):
    """
    Register a tenant's WhatsApp Business number.

    This creates a binding between a tenant and a WhatsApp Business phone number.
    The phone_number_id is used to route incoming webhooks to the correct tenant.
    """
    tenant_uuid = _parse_tenant_id(tenant_id)

    from whatsapp_flows.core.settings import get_settings
    from whatsapp_flows.persistence.repo import WhatsAppRepository
    from whatsapp_flows.routing.tenant_resolver import encrypt_secret

    encryption_key = get_settings().WHATSAPP_ENCRYPTION_KEY
    if not encryption_key and (access_token or app_secret):
        rprint("[yellow]Warning: WHATSAPP_ENCRYPTION_KEY not set, storing secrets unencrypted[/yellow]")

    db = get_db()

    try:
        repo = WhatsAppRepository(db)

        existing = repo.get_binding_by_phone_number_id(phone_number_id)
        if existing:
            rprint(f"[yellow]Binding already exists for phone_number_id: {phone_number_id}[/yellow]")
            rprint(f"  Tenant: {existing.tenant_id}")
            rprint(f"  Status: {existing.status}")
            raise typer.Exit(1)

        config = {"verify_token": verify_token} if verify_token else {}
        binding = repo.create_binding(
            tenant_id=tenant_uuid,
            phone_number_id=phone_number_id,
            display_number=display_number,
            waba_id=waba_id,
            access_token_encrypted=encrypt_secret(access_token, encryption_key) if access_token else None,
            app_secret_encrypted=encrypt_secret(app_secret, encryption_key) if app_secret else None,
            webhook_url=webhook_url,
            config=config,
        )
        db.commit()

        rprint("[green]Binding created[/green]")
        rprint(f"  ID: {binding.id}")
        rprint(f"  Tenant: {tenant_uuid}")
        rprint(f"  Phone Number ID: {phone_number_id}")
        rprint(f"  Display: {display_number}")

    finally:
        db.close()


@app.command()
def validate_flow(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Flow JSON document"),
):
    """
    Validate a flow document ({"nodes": [...], "edges": [...]}).
    """
    from whatsapp_flows.flows.errors import FlowGraphError
    from whatsapp_flows.flows.graph import FlowGraph

    try:
        document = json.loads(file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        rprint(f"[red]Invalid JSON: {e}[/red]")
        raise typer.Exit(1)

    if not isinstance(document, dict):
        rprint("[red]Flow document must be an object with nodes and edges[/red]")
        raise typer.Exit(1)

    try:
        graph = FlowGraph.from_documents(document.get("nodes"), document.get("edges"))
    except FlowGraphError as e:
        rprint(f"[red]Invalid flow: {e}[/red]")
        raise typer.Exit(1)

    table = Table(title=f"Flow {file.name}")
    table.add_column("Node", style="dim")
    table.add_column("Type")
    table.add_column("Next")

    for node in graph.nodes:
        exits = [
            f"{edge.source_handle}->{edge.target}" if edge.source_handle else edge.target
            for edge in graph.outgoing(node.id)
        ]
        table.add_row(node.id, node.kind, ", ".join(exits) or "-")

    console.print(table)

    keywords = ", ".join(f"{kw.value} ({kw.match_type})" for kw in graph.trigger_keywords)
    rprint(f"Trigger keywords: {keywords or '-'}")
    rprint(f"Single-turn: {'yes' if graph.is_single_turn else 'no'}")
    rprint("[green]Flow is valid[/green]")


@app.command()
def sign_payload(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Payload file"),
    secret: str = typer.Option(..., help="App secret"),
):
    """
    Print the X-Hub-Signature-256 header value for a payload file.
    """
    from whatsapp_flows.providers.meta_cloud.webhook import compute_signature

    print(compute_signature(file.read_bytes(), secret))


@app.command()
def list_conversations(
    tenant_id: str = typer.Argument(..., help="Tenant UUID"),
    status: Optional[str] = typer.Option(None, help="Filter by status (open, pending, closed)"),
    limit: int = typer.Option(20, help="Max results"),
):
    """
    List conversations for a tenant.
    """
    tenant_uuid = _parse_tenant_id(tenant_id)

    from whatsapp_flows.persistence.models import ConversationStatus
    from whatsapp_flows.persistence.repo import WhatsAppRepository

    status_filter = None
    if status:
        try:
            status_filter = ConversationStatus(status)
        except ValueError:
            rprint(f"[yellow]Unknown status: {status}[/yellow]")

    db = get_db()

    try:
        repo = WhatsAppRepository(db)

        conversations = repo.list_conversations(
            tenant_id=tenant_uuid,
            status=status_filter,
            limit=limit,
        )

        if not conversations:
            rprint("[yellow]No conversations found[/yellow]")
            raise typer.Exit(0)

        table = Table(title=f"Conversations for tenant {tenant_id[:8]}...")
        table.add_column("ID", style="dim")
        table.add_column("Phone")
        table.add_column("Name")
        table.add_column("Status")
        table.add_column("Unread")
        table.add_column("Last Message")
        table.add_column("Flow Step")

        for conv in conversations:
            contact = repo.get_contact(conv.contact_id)
            table.add_row(
                str(conv.id)[:8] + "...",
                contact.phone if contact else "-",
                contact.name if contact else "-",
                conv.status,
                str(conv.unread_count),
                conv.last_message_at.strftime("%Y-%m-%d %H:%M") if conv.last_message_at else "-",
                f"{str(conv.active_flow_id)[:8]}:{conv.current_step_id}" if conv.active_flow_id else "-",
            )

        console.print(table)

    finally:
        db.close()


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind address"),
    port: int = typer.Option(8090, help="Bind port"),
):
    """
    Run the webhook service.
    """
    import uvicorn

    uvicorn.run("whatsapp_flows.api.app:app", host=host, port=port)


if __name__ == "__main__":
    app()
