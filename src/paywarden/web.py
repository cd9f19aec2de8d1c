"""
Local consent and wallet configuration web app.

Consent links handed out with ``NeedsApproval`` point here. Agents call
``POST /api/x402/authorize`` to sign with the key loaded into this process.
Endpoints are plain sync handlers: every one of them does small blocking
file I/O and FastAPI runs them in its threadpool.
"""

from __future__ import annotations

import html
import json
import logging
from typing import Any, Optional

from fastapi import FastAPI
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .amounts import format_token_amount, parse_atomic_units
from .approvals import ApprovalRecord
from .context import WalletContext
from .errors import (
    InvalidKeyFormatError,
    PolicyValidationError,
    StorageError,
    UnlockFailedError,
    WalletNotConfiguredError,
)

logger = logging.getLogger(__name__)


class LoadKeyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    private_key: str = Field(alias="privateKey")
    passphrase: Optional[str] = None
    persist: bool = False


class UnlockRequest(BaseModel):
    passphrase: str


class PolicyRequest(BaseModel):
    policy: dict[str, Any]


class AuthorizeRequest(BaseModel):
    payment_required: dict[str, Any]
    intent: dict[str, Any]
    selection: Optional[dict[str, Any]] = None
    options: Optional[dict[str, Any]] = None


def _error(code: str, message: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": code, "message": message})


def create_app(context: WalletContext) -> FastAPI:
    app = FastAPI(title="paywarden", docs_url=None, redoc_url=None)
    app.state.context = context

    @app.get("/", response_class=HTMLResponse)
    def index():
        return render_index()

    @app.get("/api/config")
    def get_config() -> dict[str, Any]:
        return {
            "wallet": context.vault.status().to_dict(),
            "policy": context.policies.policy.to_dict(),
        }

    @app.post("/api/wallet/load")
    def load_key(body: LoadKeyRequest):
        passphrase = body.passphrase if body.persist else None
        if body.persist and not passphrase:
            return _error("passphrase_required", "persist requires a passphrase")
        try:
            status = context.vault.load(body.private_key, passphrase=passphrase)
        except (InvalidKeyFormatError, StorageError) as e:
            return _error(e.code, str(e))
        return {"ok": True, "wallet": status.to_dict()}

    @app.post("/api/wallet/unlock")
    def unlock(body: UnlockRequest):
        try:
            status = context.vault.unlock(body.passphrase)
        except (UnlockFailedError, WalletNotConfiguredError) as e:
            return _error(UnlockFailedError.code, str(e))
        return {"ok": True, "wallet": status.to_dict()}

    @app.post("/api/wallet/clear")
    def clear() -> dict[str, Any]:
        status = context.vault.clear()
        return {"ok": True, "wallet": status.to_dict()}

    @app.post("/api/policy")
    def set_policy(body: PolicyRequest):
        try:
            policy = context.policies.replace(body.policy)
        except (PolicyValidationError, StorageError) as e:
            return _error(e.code, str(e))
        return {"ok": True, "policy": policy.to_dict()}

    @app.post("/api/x402/authorize")
    def authorize(body: AuthorizeRequest) -> dict[str, Any]:
        # Signs with the key held in this process.
        outcome = context.authorizer().authorize(
            body.payment_required,
            body.intent,
            selection=body.selection,
            options=body.options,
        )
        return outcome.to_dict()

    @app.get("/consents/{approval_id}", response_class=HTMLResponse)
    def consent_page(approval_id: str):
        record = context.approvals.get(approval_id)
        if record is None:
            return HTMLResponse("Not Found", status_code=404)
        return render_consent(record)

    @app.post("/consents/{approval_id}/approve")
    def approve(approval_id: str):
        return _resolved(context.approvals.approve(approval_id), approval_id)

    @app.post("/consents/{approval_id}/deny")
    def deny(approval_id: str):
        return _resolved(context.approvals.deny(approval_id), approval_id)

    return app


def _resolved(record: Optional[ApprovalRecord], approval_id: str):
    if record is None:
        return _error("not_found", f"Unknown approval {approval_id}", status_code=404)
    logger.info("Consent page action on %s; status now %s", record.id, record.status)
    return {"ok": True, "id": record.id, "status": record.status}


def _consent_summary(payload: dict[str, Any]) -> list[tuple[str, str]]:
    requirement = payload.get("requirement") or {}
    intent = payload.get("intent") or {}
    rows = []
    try:
        amount = format_token_amount(parse_atomic_units(requirement.get("maxAmountRequired", "")))
        rows.append(("Amount", f"{amount} ({requirement.get('maxAmountRequired')} atomic units)"))
    except ValueError:
        rows.append(("Amount", str(requirement.get("maxAmountRequired"))))
    rows.extend(
        [
            ("Pay to", str(requirement.get("payTo", ""))),
            ("Network", str(requirement.get("network", ""))),
            ("Resource", str(requirement.get("resource", ""))),
            ("Reason", str(payload.get("reason", ""))),
            ("Why", str(intent.get("why", ""))),
            ("Caller", str(intent.get("caller", ""))),
        ]
    )
    return rows


def render_consent(record: ApprovalRecord) -> str:
    e = html.escape
    rows = "\n".join(
        f"<tr><th>{e(label)}</th><td>{e(value)}</td></tr>" for label, value in _consent_summary(record.payload)
    )
    actions = ""
    if record.is_pending:
        actions = (
            f'<form method="post" action="/consents/{e(record.id)}/approve"><button type="submit">Approve</button></form>\n'
            f'<form method="post" action="/consents/{e(record.id)}/deny"><button type="submit">Deny</button></form>'
        )
    payload = e(json.dumps(record.payload, indent=2, sort_keys=True))
    return f"""<!doctype html>
<html><head><meta charset="utf-8"/><meta name="viewport" content="width=device-width, initial-scale=1" />
<title>Approval {e(record.id)}</title>
<style>body{{font-family:-apple-system,system-ui,sans-serif;margin:24px}} pre{{background:#f7f7f7;padding:8px;border-radius:6px}} th{{text-align:left;padding-right:12px}} button{{padding:8px 12px;margin-right:8px}}</style>
</head>
<body>
  <h1>Approval {e(record.id)}</h1>
  <div>Status: <strong>{e(record.status)}</strong></div>
  <table>
{rows}
  </table>
  {actions}
  <details><summary>Full request</summary><pre>{payload}</pre></details>
</body></html>"""


def render_index() -> str:
    return """<!doctype html>
<html>
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>paywarden</title>
  <style>
    body { font-family: -apple-system, system-ui, sans-serif; margin: 24px; }
    section { border: 1px solid #ddd; padding: 16px; border-radius: 8px; margin-bottom: 16px; }
    input[type=text], input[type=password], textarea { width: 100%; padding: 8px; }
    button { margin-top: 8px; padding: 8px 12px; }
  </style>
  <script>
    async function post(path, body) {
      const res = await fetch(path, { method: 'POST', headers: { 'Content-Type': 'application/json' }, body: JSON.stringify(body || {}) });
      const data = await res.json();
      if (!res.ok) alert('Error: ' + (data.error || 'failed'));
      refresh();
    }
    async function refresh() {
      const cfg = await (await fetch('/api/config')).json();
      const w = cfg.wallet;
      document.getElementById('status').textContent =
        (w.has_key ? 'Loaded' : 'Not loaded') + (w.unlocked ? ' (unlocked) ' : ' (locked) ') + (w.address || '');
      document.getElementById('policy').textContent = JSON.stringify(cfg.policy, null, 2);
    }
    function loadKey(ev) {
      ev.preventDefault();
      post('/api/wallet/load', {
        privateKey: document.getElementById('pk').value.trim(),
        passphrase: document.getElementById('pass').value,
        persist: document.getElementById('persist').checked,
      });
      document.getElementById('pk').value = '';
    }
    function unlock(ev) {
      ev.preventDefault();
      post('/api/wallet/unlock', { passphrase: document.getElementById('unlock_pass').value });
    }
    function savePolicy(ev) {
      ev.preventDefault();
      let policy;
      try { policy = JSON.parse(document.getElementById('policy_edit').value); } catch { return alert('Invalid JSON'); }
      post('/api/policy', { policy });
    }
    window.addEventListener('load', refresh);
  </script>
</head>
<body>
  <h1>paywarden</h1>
  <section>
    <h2>Wallet</h2>
    <div>Status: <code id="status">...</code></div>
    <form onsubmit="loadKey(event)">
      <label>Private key (0x + 64 hex)<input id="pk" type="password" autocomplete="off" /></label>
      <label>Passphrase<input id="pass" type="password" /></label>
      <label><input id="persist" type="checkbox" /> Persist encrypted to disk</label>
      <button type="submit">Load key</button>
      <button type="button" onclick="post('/api/wallet/clear')">Clear</button>
    </form>
    <form onsubmit="unlock(event)">
      <label>Unlock with passphrase<input id="unlock_pass" type="password" /></label>
      <button type="submit">Unlock</button>
    </form>
  </section>
  <section>
    <h2>Policy</h2>
    <pre id="policy"></pre>
    <form onsubmit="savePolicy(event)">
      <label>Replace policy (JSON)<textarea id="policy_edit" rows="10"></textarea></label>
      <button type="submit">Save policy</button>
    </form>
  </section>
</body>
</html>"""
