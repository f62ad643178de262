"""
erc8004 CLI — operate the local identity, reputation and validation registries.

Commands:
    erc8004 init                 Create the local deployment and show its settings
    erc8004 agent ...            Register, update and look up agents
    erc8004 feedback ...         Authorize and check feedback between agents
    erc8004 validation ...       Request, answer and inspect validations
    erc8004 events               View emitted registry events
    erc8004 demo                 Run a full in-memory demo flow
"""

from __future__ import annotations

import subprocess
import sys
from typing import Optional

import click
from click.core import ParameterSource
from eth_account import Account

from . import __version__
from .chain import ManualChain
from .config import RegistryConfig
from .deployment import Deployment, deploy
from .errors import RegistryError
from .events import EventType
from .identity_registry import Agent


def _deployment() -> Deployment:
    try:
        return deploy(RegistryConfig.from_env(), persistent=True)
    except ValueError as exc:
        click.echo(f"❌ Invalid configuration: {exc}", err=True)
        sys.exit(1)


def _resolve_private_key(key_input: str) -> str:
    candidate = key_input.strip()
    if candidate.startswith("op://"):
        result = subprocess.run(
            ["op", "read", candidate],
            capture_output=True,
            text=True,
            timeout=10,
        )
        if result.returncode != 0:
            raise RuntimeError(f"Failed to read key from 1Password reference: {result.stderr.strip()}")
        candidate = result.stdout.strip()

    if candidate.startswith("0x"):
        candidate = candidate[2:]
    if len(candidate) != 64:
        raise ValueError("Private key must be a 32-byte hex string or valid op:// reference")
    int(candidate, 16)
    return "0x" + candidate


def _refuse_key_from_argv(param: str, unsafe_allow_key_arg: bool) -> None:
    ctx = click.get_current_context(silent=True)
    key_from_argv = (
        ctx is not None
        and ctx.get_parameter_source(param) == ParameterSource.COMMANDLINE
    )
    if key_from_argv and not unsafe_allow_key_arg:
        flag = "--" + param.replace("_", "-")
        click.echo(
            f"❌ Refusing {flag} from argv. Re-run with prompt input or pass "
            "--unsafe-allow-key-arg to acknowledge the risk.",
            err=True,
        )
        sys.exit(1)


def _caller_address(caller_key: str) -> str:
    try:
        return Account.from_key(_resolve_private_key(caller_key)).address
    except Exception as exc:
        click.echo(f"❌ Invalid caller key: {exc}", err=True)
        sys.exit(1)


def _fail(action: str, exc: Exception) -> None:
    click.echo(f"❌ {action}: {exc}", err=True)
    sys.exit(1)


def _echo_agent(agent: Agent) -> None:
    click.echo(f"Agent {agent.agent_id}")
    click.echo(f"   Domain:  {agent.agent_domain}")
    click.echo(f"   Address: {agent.agent_address}")


caller_key_option = click.option(
    "--caller-key",
    prompt=True,
    hide_input=True,
    help="Caller's Ethereum private key hex or op:// reference",
)
unsafe_key_option = click.option(
    "--unsafe-allow-key-arg",
    is_flag=True,
    default=False,
    help="Allow passing --caller-key via argv (unsafe; can leak in shell/process history).",
)


# ── CLI ───────────────────────────────────────────────────────────

@click.group()
@click.version_option(version=__version__)
def main():
    """erc8004 — Trust registries for autonomous agents."""
    pass


@main.command()
def init():
    """Create the local registry deployment and show its settings."""
    deployment = _deployment()
    config = deployment.config
    click.echo("✅ Registries ready")
    click.echo(f"   State dir:         {config.state_dir}")
    click.echo(f"   Registration fee:  {config.registration_fee} wei")
    click.echo(f"   Expiration window: {config.expiration_window} blocks")
    click.echo(f"   Boundary:          {'inclusive' if config.expiry_boundary_inclusive else 'exclusive'}")
    click.echo(f"   Current block:     {deployment.chain.current_block().number}")


# ── Identity ──────────────────────────────────────────────────────

@main.group("agent")
def agent_group():
    """Identity registry operations."""
    pass


@agent_group.command("register")
@click.option("--domain", required=True, help="Agent domain, e.g. trading.alice.eth")
@click.option("--address", required=True, help="Agent controlling address")
@click.option("--fee", type=int, default=0, show_default=True, help="Registration fee attached (wei)")
def agent_register(domain: str, address: str, fee: int):
    """Register a new agent."""
    deployment = _deployment()
    try:
        agent_id = deployment.identity.new_agent(domain, address, fee=fee)
    except (RegistryError, ValueError) as exc:
        _fail("Registration failed", exc)

    click.echo(f"✅ Agent registered: {agent_id}")
    _echo_agent(deployment.identity.get_agent(agent_id))


@agent_group.command("update")
@click.argument("agent_id", type=int)
@click.option("--domain", default="", help="New domain (omit to keep current)")
@click.option("--address", default=None, help="New controlling address (omit to keep current)")
@caller_key_option
@unsafe_key_option
def agent_update(
    agent_id: int,
    domain: str,
    address: Optional[str],
    caller_key: str,
    unsafe_allow_key_arg: bool,
):
    """Update an agent's domain and/or address (caller must control the agent)."""
    _refuse_key_from_argv("caller_key", unsafe_allow_key_arg)
    caller = _caller_address(caller_key)

    deployment = _deployment()
    try:
        deployment.identity.update_agent(agent_id, domain, address, caller=caller)
    except (RegistryError, ValueError) as exc:
        _fail("Update failed", exc)

    click.echo(f"✅ Agent updated: {agent_id}")
    _echo_agent(deployment.identity.get_agent(agent_id))


@agent_group.command("get")
@click.argument("agent_id", type=int)
def agent_get(agent_id: int):
    """Show an agent by ID."""
    try:
        agent = _deployment().identity.get_agent(agent_id)
    except RegistryError as exc:
        _fail("Lookup failed", exc)
    _echo_agent(agent)


@agent_group.command("resolve")
@click.option("--domain", default=None, help="Resolve by domain")
@click.option("--address", default=None, help="Resolve by address")
def agent_resolve(domain: Optional[str], address: Optional[str]):
    """Resolve an agent by domain or address."""
    if (domain is None) == (address is None):
        click.echo("❌ Pass exactly one of --domain or --address.", err=True)
        sys.exit(1)

    identity = _deployment().identity
    try:
        agent = identity.resolve_by_domain(domain) if domain is not None else identity.resolve_by_address(address)
    except (RegistryError, ValueError) as exc:
        _fail("Lookup failed", exc)
    _echo_agent(agent)


@agent_group.command("count")
def agent_count():
    """Show the number of registered agents."""
    click.echo(str(_deployment().identity.get_agent_count()))


@agent_group.command("list")
@click.option("--cursor", type=int, default=0, help="Start offset")
@click.option("--size", type=int, default=50, help="Page size")
def agent_list(cursor: int, size: int):
    """List registered agents."""
    try:
        agents, next_cursor = _deployment().identity.list_agents(cursor=cursor, size=size)
    except ValueError as exc:
        _fail("Listing failed", exc)

    if not agents:
        click.echo("No agents registered.")
        return
    for agent in agents:
        click.echo(f"- {agent.agent_id}: {agent.agent_domain} ({agent.agent_address})")
    click.echo(f"next_cursor={next_cursor}")


# ── Reputation ────────────────────────────────────────────────────

@main.group("feedback")
def feedback_group():
    """Reputation registry operations."""
    pass


@feedback_group.command("accept")
@click.option("--client-id", type=int, required=True, help="Client agent ID")
@click.option("--server-id", type=int, required=True, help="Server agent ID (must be controlled by caller)")
@caller_key_option
@unsafe_key_option
def feedback_accept(client_id: int, server_id: int, caller_key: str, unsafe_allow_key_arg: bool):
    """Authorize a client agent to give feedback about a server agent."""
    _refuse_key_from_argv("caller_key", unsafe_allow_key_arg)
    caller = _caller_address(caller_key)

    try:
        token = _deployment().reputation.accept_feedback(client_id, server_id, caller=caller)
    except (RegistryError, ValueError) as exc:
        _fail("Authorization failed", exc)

    click.echo(f"✅ Feedback authorized: client={client_id} server={server_id}")
    click.echo(f"   Auth ID: {token}")


@feedback_group.command("status")
@click.option("--client-id", type=int, required=True, help="Client agent ID")
@click.option("--server-id", type=int, required=True, help="Server agent ID")
def feedback_status(client_id: int, server_id: int):
    """Check whether feedback is authorized for a pair."""
    authorized, token = _deployment().reputation.is_feedback_authorized(client_id, server_id)
    click.echo(f"authorized={str(authorized).lower()}")
    click.echo(f"feedback_auth_id={token}")


# ── Validation ────────────────────────────────────────────────────

@main.group("validation")
def validation_group():
    """Validation registry operations."""
    pass


@validation_group.command("request")
@click.option("--validator-id", type=int, required=True, help="Validator agent ID")
@click.option("--server-id", type=int, required=True, help="Server agent ID")
@click.option("--data-hash", required=True, help="32-byte hash of the work to validate")
def validation_request(validator_id: int, server_id: int, data_hash: str):
    """Open a validation request (any caller)."""
    try:
        request = _deployment().validation.validation_request(validator_id, server_id, data_hash)
    except (RegistryError, ValueError) as exc:
        _fail("Request failed", exc)

    click.echo(f"✅ Validation requested: {request.data_hash}")
    click.echo(f"   Validator: {request.agent_validator_id}")
    click.echo(f"   Server:    {request.agent_server_id}")
    click.echo(f"   Height:    {request.created_at_height}")


@validation_group.command("respond")
@click.argument("data_hash")
@click.option("--response", type=int, required=True, help="Validation response (score 0-100)")
@caller_key_option
@unsafe_key_option
def validation_respond(data_hash: str, response: int, caller_key: str, unsafe_allow_key_arg: bool):
    """Answer a pending validation request (designated validator only)."""
    _refuse_key_from_argv("caller_key", unsafe_allow_key_arg)
    caller = _caller_address(caller_key)

    try:
        _deployment().validation.validation_response(data_hash, response, caller=caller)
    except (RegistryError, ValueError) as exc:
        _fail("Response failed", exc)

    click.echo(f"✅ Validation responded: {data_hash} → {response}")


@validation_group.command("status")
@click.argument("data_hash")
def validation_status(data_hash: str):
    """Show a validation request and its derived status."""
    validation = _deployment().validation
    try:
        request = validation.get_validation_request(data_hash)
        status = validation.get_validation_status(data_hash)
    except (RegistryError, ValueError) as exc:
        _fail("Lookup failed", exc)

    click.echo(f"Validation {request.data_hash}")
    click.echo(f"   Status:    {status.value}")
    click.echo(f"   Validator: {request.agent_validator_id}")
    click.echo(f"   Server:    {request.agent_server_id}")
    click.echo(f"   Created:   block {request.created_at_height}")
    click.echo(f"   Last live: block {validation.last_live_height(request)}")
    if request.responded:
        click.echo(f"   Response:  {request.response} (block {request.responded_at_height})")


@validation_group.command("check-expiry")
@click.option("--within", type=int, required=True, help="Lookahead window in blocks")
@click.option("--webhook-url", default=None, help="Optional webhook URL for expiry notifications")
def validation_check_expiry(within: int, webhook_url: Optional[str]):
    """Report pending requests expiring within a window and optionally POST to webhook."""
    if within <= 0:
        click.echo("❌ --within must be a positive number of blocks", err=True)
        sys.exit(1)

    expiring = _deployment().validation.list_expiring(within)
    if not expiring:
        click.echo("No pending validation requests expiring in the selected window.")
        return

    click.echo(f"Validation requests expiring within {within} blocks:")
    for request, remaining in expiring:
        click.echo(
            f"- {request.data_hash} (validator={request.agent_validator_id}, "
            f"server={request.agent_server_id}, blocks_left={remaining})"
        )

    if webhook_url:
        try:
            import httpx

            body = {
                "event": "validation_expiry_warning",
                "within_blocks": within,
                "count": len(expiring),
                "requests": [
                    {
                        "data_hash": request.data_hash,
                        "agent_validator_id": request.agent_validator_id,
                        "agent_server_id": request.agent_server_id,
                        "blocks_left": remaining,
                    }
                    for request, remaining in expiring
                ],
            }
            response = httpx.post(webhook_url, json=body, timeout=5.0)
            response.raise_for_status()
            click.echo(f"Webhook delivered: {webhook_url}")
        except Exception as exc:
            click.echo(f"❌ Failed to deliver webhook: {exc}", err=True)
            sys.exit(1)


# ── Events ────────────────────────────────────────────────────────

@main.command()
@click.option(
    "--type",
    "event_type",
    type=click.Choice([t.value for t in EventType]),
    default=None,
    help="Filter by event type",
)
@click.option("--limit", type=int, default=20, help="Number of events to show")
def events(event_type: Optional[str], limit: int):
    """View emitted registry events."""
    try:
        items = _deployment().events.read_events(
            event_type=EventType(event_type) if event_type else None,
            limit=limit,
        )
    except RuntimeError as exc:
        _fail("Cannot read events", exc)

    if not items:
        click.echo("No events recorded.")
        return
    for event in items:
        args = " ".join(f"{k}={v}" for k, v in sorted(event.args.items()))
        click.echo(f"#{event.sequence} block={event.block_number} {event.event_type} {args}")


@main.command()
def demo():
    """Run a full in-memory demo of the three registries."""
    click.echo("🎬 erc8004 Demo — Identity, Reputation, Validation")
    click.echo("=" * 50)

    chain = ManualChain()
    deployment = deploy(chain=chain)
    identity, reputation, validation = deployment.identity, deployment.reputation, deployment.validation

    click.echo("\n1️⃣  Generating agent accounts...")
    alice, bob, charlie = Account.create(), Account.create(), Account.create()
    click.echo(f"   Alice   (trading):    {alice.address}")
    click.echo(f"   Bob     (analytics):  {bob.address}")
    click.echo(f"   Charlie (validator):  {charlie.address}")

    click.echo("\n2️⃣  Registering agents...")
    alice_id = identity.new_agent("trading.alice.eth", alice.address)
    bob_id = identity.new_agent("analytics.bob.eth", bob.address)
    charlie_id = identity.new_agent("validator.charlie.eth", charlie.address)
    click.echo(f"   ✅ IDs: alice={alice_id} bob={bob_id} charlie={charlie_id}")

    try:
        identity.new_agent("trading.alice.eth", Account.create().address)
    except RegistryError as exc:
        click.echo(f"   ❌ Duplicate domain rejected: {exc}")

    click.echo("\n3️⃣  Bob authorizes Alice to give feedback...")
    reputation.accept_feedback(alice_id, bob_id, caller=bob.address)
    authorized, token = reputation.is_feedback_authorized(alice_id, bob_id)
    click.echo(f"   {'✅' if authorized else '❌'} authorized={authorized} auth_id={token[:18]}…")

    click.echo("\n4️⃣  Validation of Bob's work by Charlie...")
    data_hash = "0x" + "ab" * 32
    validation.validation_request(charlie_id, bob_id, data_hash)
    click.echo(f"   Pending: {validation.is_validation_pending(data_hash)}")
    chain.mine(10)
    try:
        validation.validation_response(data_hash, 85, caller=alice.address)
    except RegistryError as exc:
        click.echo(f"   ❌ Non-validator rejected: {exc}")
    validation.validation_response(data_hash, 85, caller=charlie.address)
    click.echo(f"   ✅ Response: {validation.get_validation_response(data_hash)}")

    click.echo("\n5️⃣  An unanswered request expires...")
    stale_hash = "0x" + "cd" * 32
    validation.validation_request(charlie_id, alice_id, stale_hash)
    chain.mine(deployment.config.expiration_window + 1)
    click.echo(f"   Status: {validation.get_validation_status(stale_hash).value}")

    click.echo("\n6️⃣  Events...")
    for event in deployment.events.read_events():
        click.echo(f"   #{event.sequence} block={event.block_number} {event.event_type}")

    click.echo("\n" + "=" * 50)
    click.echo("🎉 Demo complete! Register → Authorize → Request → Respond → Expire")


if __name__ == "__main__":
    main()
