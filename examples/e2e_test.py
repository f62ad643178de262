"""
End-to-end walkthrough: persistent registries shared by two deployments,
with an off-chain indexer following the event log.
"""

import sys
import tempfile
from collections import defaultdict
from pathlib import Path

from eth_account import Account

sys.path.insert(0, "../src")
from erc8004 import RegistryConfig, deploy
from erc8004.chain import ManualChain
from erc8004.errors import RegistryError


class Indexer:
    """Tracks per-agent activity from emitted events."""

    def __init__(self):
        self.activity = defaultdict(list)

    def __call__(self, event):
        for key in ("agent_id", "agent_server_id", "agent_validator_id"):
            if key in event.args:
                self.activity[event.args[key]].append(event.event_type)


def main():
    print("🚀 erc8004 E2E — Persistent registries + event indexer")
    print("=" * 55)
    print()

    state_dir = Path(tempfile.mkdtemp(prefix="erc8004-e2e-"))
    config = RegistryConfig(state_dir=state_dir, expiration_window=50)
    chain = ManualChain(height=1)

    # 1. First deployment registers agents
    print("1️⃣  Registering agents...")
    first = deploy(config, persistent=True, chain=chain)
    indexer = Indexer()
    first.events.subscribe(indexer)
    alice, bob, charlie = Account.create(), Account.create(), Account.create()
    first.identity.new_agent("trading.alice.eth", alice.address)
    first.identity.new_agent("analytics.bob.eth", bob.address)
    first.identity.new_agent("validator.charlie.eth", charlie.address)
    print(f"   ✅ {first.identity.get_agent_count()} agents in {state_dir}")
    print()

    # 2. A second deployment sees the same state
    print("2️⃣  Reopening registries from disk...")
    second = deploy(config, persistent=True, chain=chain)
    second.events.subscribe(indexer)
    agent = second.identity.resolve_by_domain("analytics.bob.eth")
    print(f"   ✅ Resolved analytics.bob.eth → {agent.agent_id} ({agent.agent_address})")
    print()

    # 3. Feedback authorization
    print("3️⃣  Bob authorizes Alice...")
    token = second.reputation.accept_feedback(1, 2, caller=bob.address)
    print(f"   ✅ auth_id={token}")
    print()

    # 4. Validation, answered and expired
    print("4️⃣  Validation requests...")
    answered, stale = "0x" + "11" * 32, "0x" + "22" * 32
    second.validation.validation_request(3, 2, answered)
    second.validation.validation_request(3, 1, stale)
    chain.mine(5)
    second.validation.validation_response(answered, 92, caller=charlie.address)
    chain.mine(config.expiration_window)
    try:
        second.validation.validation_response(stale, 70, caller=charlie.address)
    except RegistryError as exc:
        print(f"   ❌ Late response rejected: {exc}")
    for data_hash in (answered, stale):
        print(f"   {data_hash[:10]}… {second.validation.get_validation_status(data_hash).value}")
    print()

    # 5. Indexer view
    print("5️⃣  Indexed activity...")
    for agent_id, kinds in sorted(indexer.activity.items()):
        print(f"   agent {agent_id}: {', '.join(kinds)}")
    print(f"   Event log entries: {len(second.events.read_events(limit=1000))}")
    print()
    print("=" * 55)
    print("🎉 E2E complete")


if __name__ == "__main__":
    main()
