"""
paywarden CLI: agent payment authorization with a human in the loop.

Commands:
    paywarden wallet      Load, unlock, inspect or clear the signing key
    paywarden policy      Show or change the spending policy
    paywarden approvals   List and resolve pending consent requests
    paywarden authorize   Authorize a saved 402 challenge
    paywarden fetch       Fetch a URL, paying x402 challenges as policy allows
    paywarden audit       View the audit trail
    paywarden serve       Run the local consent web app
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import Any, Optional

import click
import httpx
from click.core import ParameterSource

from .amounts import format_token_amount
from .approvals import ApprovalStatus
from .audit import AuditTrail, Decision
from .config import Settings
from .context import WalletContext
from .errors import PaywardenError
from .models import AuthorizeOptions, PaymentIntent, SelectionHints
from .payment import Authorized, Denied, NeedsApproval, PaymentOutcome
from .x402_client import X402Client

PRIVATE_KEY_ENV = "PAYWARDEN_PRIVATE_KEY"
PASSPHRASE_ENV = "PAYWARDEN_PASSPHRASE"


def _echo_json(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, sort_keys=True))


def _fail(message: str) -> None:
    click.echo(f"❌ {message}", err=True)
    sys.exit(1)


def _context(ctx: click.Context) -> WalletContext:
    try:
        return WalletContext.from_settings(ctx.obj)
    except (PaywardenError, ValueError) as e:
        _fail(f"Failed to open wallet data in {ctx.obj.data_dir}: {e}")


def _passphrase(confirm: bool = False) -> str:
    env_value = os.getenv(PASSPHRASE_ENV)
    if env_value:
        return env_value
    return click.prompt("Passphrase", hide_input=True, confirmation_prompt=confirm)


def _ready_wallet(wallet: WalletContext) -> None:
    """Bring a key into memory for this process, if one is available."""
    env_key = os.getenv(PRIVATE_KEY_ENV)
    try:
        if env_key:
            wallet.vault.load(env_key.strip())
        elif wallet.vault.has_persisted_key:
            wallet.vault.unlock(_passphrase())
    except PaywardenError as e:
        _fail(f"{e} ({e.code})")


def _print_outcome(outcome: PaymentOutcome) -> None:
    _echo_json(outcome.to_dict())
    if isinstance(outcome, NeedsApproval):
        click.echo(f"⏳ Approval needed ({outcome.reason}): {outcome.approval_url}", err=True)
    elif isinstance(outcome, Authorized):
        click.echo(f"✅ Authorized by {outcome.address}", err=True)
    elif isinstance(outcome, Denied):
        click.echo(f"❌ Denied ({outcome.code}): {outcome.reason}", err=True)
    else:
        click.echo(f"❌ {outcome.code}: {outcome.message}", err=True)


# ── CLI ───────────────────────────────────────────────────────────

@click.group()
@click.version_option(package_name="paywarden")
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Wallet data directory (default: env PAYWARDEN_DATA_DIR or ~/.paywarden)",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Log level (default: env PAYWARDEN_LOG_LEVEL or WARNING)",
)
@click.pass_context
def main(ctx: click.Context, data_dir: Optional[Path], log_level: Optional[str]):
    """paywarden: bounded x402 payments for AI agents."""
    settings = Settings.from_env()
    if data_dir is not None:
        settings = dataclasses.replace(settings, data_dir=data_dir.expanduser())
    logging.basicConfig(
        level=(log_level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    ctx.obj = settings


# ── wallet ────────────────────────────────────────────────────────

@main.group("wallet")
def wallet_group():
    """Signing key management."""


@wallet_group.command("load")
@click.option("--private-key", prompt=True, hide_input=True, envvar=PRIVATE_KEY_ENV,
              help=f"Private key (0x + 64 hex). Prompted, or env {PRIVATE_KEY_ENV}")
@click.option(
    "--unsafe-allow-key-arg",
    is_flag=True,
    default=False,
    help="Allow passing --private-key via argv (unsafe; can leak in shell/process history).",
)
@click.pass_context
def wallet_load(ctx: click.Context, private_key: str, unsafe_allow_key_arg: bool):
    """Encrypt a private key to disk under a passphrase."""
    if ctx.get_parameter_source("private_key") == ParameterSource.COMMANDLINE and not unsafe_allow_key_arg:
        _fail(
            "Refusing --private-key from argv. Re-run with prompt input, set "
            f"{PRIVATE_KEY_ENV}, or pass --unsafe-allow-key-arg to acknowledge the risk."
        )

    wallet = _context(ctx)
    try:
        status = wallet.vault.load(private_key.strip(), passphrase=_passphrase(confirm=True))
    except PaywardenError as e:
        _fail(f"Failed to load key: {e} ({e.code})")

    click.echo(f"✅ Wallet key stored: {status.address}")
    click.echo(f"   Encrypted file: {wallet.vault.key_path}")


@wallet_group.command("unlock")
@click.pass_context
def wallet_unlock(ctx: click.Context):
    """Check that the passphrase unlocks the stored key."""
    wallet = _context(ctx)
    try:
        status = wallet.vault.unlock(_passphrase())
    except PaywardenError as e:
        _fail(f"{e} ({e.code})")
    click.echo(f"✅ Unlocked: {status.address}")


@wallet_group.command("status")
@click.pass_context
def wallet_status(ctx: click.Context):
    """Show whether a key is stored (never the key itself)."""
    _echo_json(_context(ctx).vault.status().to_dict())


@wallet_group.command("clear")
@click.confirmation_option(prompt="Delete the stored wallet key?")
@click.pass_context
def wallet_clear(ctx: click.Context):
    """Delete the stored key."""
    _context(ctx).vault.clear()
    click.echo("✅ Wallet key cleared")


# ── policy ────────────────────────────────────────────────────────

@main.group("policy")
def policy_group():
    """Spending policy."""


@policy_group.command("show")
@click.pass_context
def policy_show(ctx: click.Context):
    _echo_json(_context(ctx).policies.policy.to_dict())


@policy_group.command("set")
@click.argument("policy_file", type=click.File("r"))
@click.pass_context
def policy_set(ctx: click.Context, policy_file):
    """Replace the policy with the JSON document in POLICY_FILE ('-' for stdin)."""
    wallet = _context(ctx)
    try:
        policy = wallet.policies.replace(json.load(policy_file))
    except (json.JSONDecodeError, PaywardenError) as e:
        _fail(f"Invalid policy: {e}")
    click.echo("✅ Policy replaced")
    _echo_json(policy.to_dict())


@policy_group.command("update")
@click.argument("patch")
@click.pass_context
def policy_update(ctx: click.Context, patch: str):
    """Merge a JSON object into the policy, e.g. '{"auto_approve_under": "10000"}'."""
    wallet = _context(ctx)
    try:
        policy = wallet.policies.update(json.loads(patch))
    except (json.JSONDecodeError, PaywardenError) as e:
        _fail(f"Invalid policy update: {e}")
    click.echo("✅ Policy updated")
    _echo_json(policy.to_dict())


# ── approvals ─────────────────────────────────────────────────────

@main.group("approvals")
def approvals_group():
    """Consent requests created when policy needs a human."""


@approvals_group.command("list")
@click.option("--status", "status_filter",
              type=click.Choice([s.value for s in ApprovalStatus]), default=None,
              help="Only show approvals in this state")
@click.pass_context
def approvals_list(ctx: click.Context, status_filter: Optional[str]):
    records = _context(ctx).approvals.list_approvals(
        ApprovalStatus(status_filter) if status_filter else None
    )
    if not records:
        click.echo("No approvals.")
        return
    for record in records:
        requirement = record.payload.get("requirement") or {}
        created = time.strftime("%Y-%m-%d %H:%M", time.localtime(record.created_at / 1000))
        amount = requirement.get("maxAmountRequired", "?")
        try:
            amount = format_token_amount(int(amount))
        except ValueError:
            pass
        click.echo(
            f"{record.id}  {record.status:<8}  {created}  {amount} → {requirement.get('payTo', '?')}"
            f"  ({record.payload.get('reason', '')})"
        )


@approvals_group.command("show")
@click.argument("approval_id")
@click.pass_context
def approvals_show(ctx: click.Context, approval_id: str):
    record = _context(ctx).approvals.get(approval_id)
    if record is None:
        _fail(f"Approval not found: {approval_id}")
    _echo_json(record.to_dict())


@approvals_group.command("approve")
@click.argument("approval_id")
@click.pass_context
def approvals_approve(ctx: click.Context, approval_id: str):
    _resolve(ctx, approval_id, approve=True)


@approvals_group.command("deny")
@click.argument("approval_id")
@click.pass_context
def approvals_deny(ctx: click.Context, approval_id: str):
    _resolve(ctx, approval_id, approve=False)


def _resolve(ctx: click.Context, approval_id: str, approve: bool) -> None:
    ledger = _context(ctx).approvals
    record = ledger.approve(approval_id) if approve else ledger.deny(approval_id)
    if record is None:
        _fail(f"Approval not found: {approval_id}")
    wanted = ApprovalStatus.APPROVED.value if approve else ApprovalStatus.DENIED.value
    if record.status != wanted:
        _fail(f"Approval {approval_id} was already {record.status}")
    click.echo(f"✅ Approval {record.id}: {record.status}")


# ── payments ──────────────────────────────────────────────────────

def _options(
    approval_id: Optional[str],
    require_approval: bool,
    window: Optional[int],
    network: Optional[str],
    asset: Optional[str],
) -> AuthorizeOptions:
    return AuthorizeOptions(
        require_user_approval=require_approval,
        approval_id=approval_id,
        validity_window_seconds=window,
        preferred_network=network,
        preferred_asset=asset,
    )


_payment_options = [
    click.option("--why", required=True, help="Why the payment is needed"),
    click.option("--caller", default="paywarden-cli", show_default=True, help="Caller identifier"),
    click.option("--method", "http_method", default="GET", show_default=True, help="HTTP method"),
    click.option("--approval-id", default=None, help="Approval id returned by an earlier attempt"),
    click.option("--require-approval", is_flag=True, default=False, help="Always ask a human"),
    click.option("--window", type=click.IntRange(min=1), default=None,
                 help="Requested validity window in seconds"),
    click.option("--network", default=None, help="Preferred network"),
    click.option("--asset", default=None, help="Preferred asset address"),
    click.option("--trace-id", default=None, help="Trace id recorded in the audit log"),
]


def payment_options(func):
    for option in reversed(_payment_options):
        func = option(func)
    return func


@main.command()
@click.argument("challenge_file", type=click.File("r"))
@click.option("--url", required=True, help="The URL the payment unlocks")
@click.option("--accept-index", type=click.IntRange(min=0), default=None,
              help="Pick this entry of accepts[] directly")
@payment_options
@click.pass_context
def authorize(
    ctx: click.Context,
    challenge_file,
    url: str,
    accept_index: Optional[int],
    why: str,
    caller: str,
    http_method: str,
    approval_id: Optional[str],
    require_approval: bool,
    window: Optional[int],
    network: Optional[str],
    asset: Optional[str],
    trace_id: Optional[str],
):
    """Authorize the 402 body in CHALLENGE_FILE ('-' for stdin); prints the outcome JSON."""
    try:
        challenge = json.load(challenge_file)
    except json.JSONDecodeError as e:
        _fail(f"Challenge is not valid JSON: {e}")

    wallet = _context(ctx)
    _ready_wallet(wallet)
    outcome = wallet.authorizer().authorize(
        challenge,
        PaymentIntent(why=why, http_method=http_method.upper(), http_url=url, caller=caller, trace_id=trace_id),
        selection=SelectionHints(accept_index=accept_index),
        options=_options(approval_id, require_approval, window, network, asset),
    )
    _print_outcome(outcome)
    if not isinstance(outcome, (Authorized, NeedsApproval)):
        sys.exit(1)


@main.command()
@click.argument("url")
@click.option("--timeout", type=float, default=30.0, show_default=True, help="HTTP timeout in seconds")
@payment_options
@click.pass_context
def fetch(
    ctx: click.Context,
    url: str,
    timeout: float,
    why: str,
    caller: str,
    http_method: str,
    approval_id: Optional[str],
    require_approval: bool,
    window: Optional[int],
    network: Optional[str],
    asset: Optional[str],
    trace_id: Optional[str],
):
    """Fetch URL, paying an x402 challenge if policy allows."""
    wallet = _context(ctx)
    _ready_wallet(wallet)
    try:
        with X402Client(wallet.authorizer(), timeout=timeout) as client:
            result = client.fetch(
                url,
                why=why,
                caller=caller,
                method=http_method,
                options=_options(approval_id, require_approval, window, network, asset),
                trace_id=trace_id,
            )
    except httpx.HTTPError as e:
        _fail(f"Request failed: {type(e).__name__}: {e}")

    if result.outcome is not None:
        _print_outcome(result.outcome)
    if result.settlement:
        click.echo(f"   Settlement: {json.dumps(result.settlement, sort_keys=True)}", err=True)
    click.echo(f"HTTP {result.status_code}", err=True)
    if result.status_code < 400:
        click.echo(result.text())
    elif not isinstance(result.outcome, NeedsApproval):
        sys.exit(1)


# ── audit / serve ─────────────────────────────────────────────────

@main.command()
@click.option("--limit", default=20, show_default=True, help="Number of records to show")
@click.option("--decision", type=click.Choice([d.value for d in Decision]), default=None)
@click.option("--summary", "as_summary", is_flag=True, default=False, help="Print totals only")
@click.pass_context
def audit(ctx: click.Context, limit: int, decision: Optional[str], as_summary: bool):
    """View the audit trail (the hash chain is verified on read)."""
    settings: Settings = ctx.obj
    trail = AuditTrail(settings.audit_path, settings.audit_key_path)
    try:
        if as_summary:
            _echo_json(trail.summary())
            return
        records = trail.read_events(decision=Decision(decision) if decision else None, limit=limit)
    except PaywardenError as e:
        _fail(str(e))

    if not records:
        click.echo("No audit records.")
        return
    for record in records:
        ts = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(record.timestamp))
        status = "✅" if record.decision == Decision.OK.value else ("⏳" if record.decision == Decision.NEED_APPROVAL.value else "❌")
        requirement = record.requirement or {}
        detail = record.reason or record.code or record.address or ""
        click.echo(
            f"{ts} {status} {record.decision:<13} {requirement.get('maxAmountRequired', '-'):>10} "
            f"{requirement.get('resource', '-')}  {detail}"
        )


@main.command()
@click.option("--host", default=None, help="Bind address (default: env PAYWARDEN_WEB_HOST or 127.0.0.1)")
@click.option("--port", type=int, default=None, help="Port (default: env PAYWARDEN_WEB_PORT or 3078)")
@click.option("--unlock", "unlock_first", is_flag=True, default=False,
              help="Unlock the stored key before serving")
@click.pass_context
def serve(ctx: click.Context, host: Optional[str], port: Optional[int], unlock_first: bool):
    """Run the consent and wallet web app."""
    import uvicorn

    from .web import create_app

    if port is not None:
        ctx.obj = dataclasses.replace(ctx.obj, web_port=port)
    settings: Settings = ctx.obj
    wallet = _context(ctx)
    if unlock_first:
        _ready_wallet(wallet)
    bind_host = host or settings.web_host
    click.echo(f"✅ Serving on http://{bind_host}:{settings.web_port} (consent links: {settings.consent_base_url})")
    uvicorn.run(create_app(wallet), host=bind_host, port=settings.web_port)


if __name__ == "__main__":
    main()
