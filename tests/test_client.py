import asyncio

import pytest

from hivestream import ClientConfig, HiveClient, StreamHandlers
from hivestream.rpc import AllNodesExhaustedError, TransactionSemanticError, TransportError
from hivestream.streaming import JsonFileStateStore, MemoryStateStore
from hivestream.submission import SubmissionCancelledError

from conftest import FakeLedger, FakeNode

A, B = "https://a.example", "https://b.example"

PROPS = {
    "head_block_number": 1020,
    "last_irreversible_block_num": 1000,
    "time": "2024-03-01T12:00:00",
}
HEADER = {"previous": "000003e7" + "01020304" + "00" * 12}


class FakeSigner:
    def __init__(self):
        self.signed = []

    def sign(self, transaction, key):
        self.signed.append((transaction, key))
        return dict(transaction, signatures=[f"sig-{key}"])


def ledger_responses(**extra):
    responses = {
        "condenser_api.get_dynamic_global_properties": PROPS,
        "condenser_api.get_block_header": HEADER,
    }
    responses.update(extra)
    return responses


def make_client(nodes, clock, signer=None, **config):
    by_address = {n.address: n for n in nodes}
    return HiveClient(
        ClientConfig(rpc_nodes=list(by_address), **config),
        signer=signer,
        node_factory=by_address.__getitem__,
        clock=clock,
    )


def test_call_fails_over_between_nodes(clock):
    nodes = [FakeNode(A, error=TransportError("refused")), FakeNode(B, ledger_responses())]
    client = make_client(nodes, clock)

    async def scenario():
        async with client:
            return await client.get_dynamic_global_properties(), await client.get_node_stats()

    props, stats = asyncio.run(scenario())
    assert props == PROPS
    assert stats[0]["consecutive_errors"] == 1
    assert stats[1]["total_requests"] == 1


def test_broadcast_signs_reference_block(clock):
    nodes = [FakeNode(A, ledger_responses())]
    signer = FakeSigner()
    client = make_client(nodes, clock, signer=signer)
    operations = [["custom_json", {"id": "app", "json": "{}"}]]

    result = asyncio.run(client.broadcast(operations, "5Jkey"))

    assert result == {"id": "f00d", "block_num": 1}
    sent = nodes[0].broadcasts[0]
    assert sent["signatures"] == ["sig-5Jkey"]
    assert sent["ref_block_num"] == 999
    assert sent["ref_block_prefix"] == 0x04030201
    assert sent["operations"] == operations


def test_rejected_broadcast_is_not_sent_to_other_nodes(clock):
    first = FakeNode(A, ledger_responses())
    second = FakeNode(B, ledger_responses())

    async def reject(tx):
        raise TransactionSemanticError("insufficient funds")

    first.broadcast_transaction = reject
    client = make_client([first, second], clock, signer=FakeSigner())

    with pytest.raises(TransactionSemanticError):
        asyncio.run(client.broadcast([["transfer", {}]], "key"))
    assert second.broadcasts == []


def test_broadcast_transport_failure_moves_to_next_node(clock):
    first = FakeNode(A, ledger_responses())
    second = FakeNode(B, ledger_responses())

    async def refuse(tx):
        raise TransportError("connection reset")

    first.broadcast_transaction = refuse
    client = make_client([first, second], clock, signer=FakeSigner())

    asyncio.run(client.broadcast([["transfer", {}]], "key"))
    assert len(second.broadcasts) == 1


def test_broadcast_without_signer_fails(clock):
    client = make_client([FakeNode(A, ledger_responses())], clock)
    with pytest.raises(RuntimeError):
        asyncio.run(client.broadcast([], "key"))


def test_submit_goes_through_queue(clock):
    node = FakeNode(A, ledger_responses())
    client = make_client([node], clock, signer=FakeSigner())

    async def scenario():
        results = await asyncio.gather(
            client.submit([["custom_json", {"id": "one"}]], "key"),
            client.submit([["custom_json", {"id": "two"}]], "key"),
            client.run_submissions(max_ticks=2),
        )
        await client.submissions.drain()
        return results

    first, second, _ = asyncio.run(scenario())
    assert first == second == {"id": "f00d", "block_num": 1}
    assert sorted(tx["operations"][0][1]["id"] for tx in node.broadcasts) == ["one", "two"]


def test_stream_through_failover(clock):
    ledger = FakeLedger(head=42)
    good = FakeNode(B)
    good.call = ledger.call
    client = make_client([FakeNode(A, error=TransportError("down")), good], clock)
    seen = []

    asyncio.run(client.stream(StreamHandlers(on_block=lambda n, block, head: seen.append(n)), max_ticks=1))

    assert isinstance(client.state_store, MemoryStateStore)
    assert seen == [42]
    assert client.streamer.cursor.last_block == 42


def test_state_file_config_selects_file_store(clock, tmp_path):
    client = make_client([FakeNode(A)], clock, state_file=tmp_path / "s.json", state_key="hive")
    assert isinstance(client.state_store, JsonFileStateStore)
    assert client.state_store.key == "hive"


def test_clients_do_not_share_state(clock):
    one = make_client([FakeNode(A, error=TransportError("down")), FakeNode(B, ledger_responses())], clock)
    two = make_client([FakeNode(A, ledger_responses())], clock)

    asyncio.run(one.get_dynamic_global_properties())

    assert one.pool.nodes[0].consecutive_error_count == 1
    assert two.pool.nodes[0].consecutive_error_count == 0
    assert one.submissions is not two.submissions


def test_unopened_client_without_factory_refuses_calls():
    client = HiveClient(ClientConfig(rpc_nodes=[A]))
    with pytest.raises(RuntimeError):
        asyncio.run(client.api("get_dynamic_global_properties"))


def test_every_node_down_raises_exhausted(clock):
    client = make_client(
        [FakeNode(A, error=TransportError("down")), FakeNode(B, error=TransportError("down"))], clock
    )
    with pytest.raises(AllNodesExhaustedError):
        asyncio.run(client.get_block(1))


def test_submit_runs_queue_without_explicit_runner(clock):
    node = FakeNode(A, ledger_responses())
    client = make_client([node], clock, signer=FakeSigner())

    async def scenario():
        async with client:
            return await client.submit([["custom_json", {"id": "solo"}]], "key")

    assert asyncio.run(scenario()) == {"id": "f00d", "block_num": 1}
    assert [tx["operations"][0][1]["id"] for tx in node.broadcasts] == ["solo"]


def test_close_rejects_pending_submission(clock):
    node = FakeNode(A, ledger_responses())
    client = make_client([node], clock, signer=FakeSigner())

    async def scenario():
        async with client:
            task = asyncio.ensure_future(client.submit([["custom_json", {"id": "late"}]], "key"))
        with pytest.raises(SubmissionCancelledError):
            await asyncio.wait_for(task, 0.5)

    asyncio.run(scenario())
    assert node.broadcasts == []


def test_setup_logging_applies_configured_level(monkeypatch):
    levels = []
    monkeypatch.setattr("hivestream.client.configure_logging", levels.append)

    HiveClient(ClientConfig(rpc_nodes=[A], log_level="debug"), setup_logging=True)
    HiveClient(ClientConfig(rpc_nodes=[A], log_level="debug"))

    assert levels == ["debug"]
