import pytest
from eth_abi import encode
from eth_utils import keccak, to_checksum_address

from conftest import (
    ALICE,
    BOB,
    MATHLIB_ADDRESS,
    STRANGER_ADDRESS,
    TOKEN_ADDRESS,
    TOKEN_CREATION,
    TOKEN_ID,
    VAULT_ADDRESS,
    VAULT_ID,
    FakeTransport,
    approval_log,
    deployed_code,
    make_artifact,
    make_log,
    transfer_log,
)
from wire_decoder import (
    ConstructorDecoding,
    ContractDefinition,
    ContractValue,
    EventDecoding,
    FunctionDecoding,
    MessageDecoding,
    TransportError,
    UnknownDecoding,
    WireDecoder,
)
from wire_decoder.contexts import make_context


def _calldata(signature, types, values):
    return "0x" + keccak(text=signature)[:4].hex() + encode(types, values).hex()


def test_decode_function_call(decoder, transport):
    tx = {
        "hash": "0x" + "ab" * 32,
        "to": TOKEN_ADDRESS,
        "blockNumber": "0x64",
        "input": _calldata("transfer(address,uint256)", ["address", "uint256"], [BOB, 1000]),
    }

    decoded = decoder.decode_transaction(tx)

    assert decoded["hash"] == tx["hash"]
    decoding = decoded["decoding"]
    assert isinstance(decoding, FunctionDecoding)
    assert decoding.class_name == "Token"
    assert decoding.name == "transfer"
    assert decoding.values == {"to": to_checksum_address(BOB), "amount": 1000}
    assert transport.code_calls == [(TOKEN_ADDRESS, 100)]


def test_contract_creation_decodes_constructor_arguments(decoder, transport):
    tx = {
        "to": None,
        "blockNumber": 100,
        "input": "0x" + TOKEN_CREATION + encode(["uint256"], [21_000_000]).hex(),
    }

    decoding = decoder.decode_transaction(tx)["decoding"]

    assert isinstance(decoding, ConstructorDecoding)
    assert decoding.class_name == "Token"
    assert decoding.values == {"supply": 21_000_000}
    assert decoding.bytecode_length == len(TOKEN_CREATION) // 2
    assert transport.code_calls == []


def test_contract_typed_argument_is_resolved_mid_decode(decoder, transport):
    tx = {
        "to": VAULT_ADDRESS,
        "blockNumber": 100,
        "input": _calldata("deposit(address,uint256)", ["address", "uint256"], [TOKEN_ADDRESS, 5]),
    }

    decoding = decoder.decode_transaction(tx)["decoding"]

    assert decoding.class_name == "Vault"
    assert decoding.name == "deposit"
    token = decoding.values["token"]
    assert isinstance(token, ContractValue)
    assert token.class_name == "Token"
    assert token.contract_id == TOKEN_ID
    assert transport.code_calls == [(VAULT_ADDRESS, 100), (TOKEN_ADDRESS, 100)]


def test_contract_typed_argument_with_unknown_code(decoder):
    tx = {
        "to": VAULT_ADDRESS,
        "blockNumber": 100,
        "input": _calldata("deposit(address,uint256)", ["address", "uint256"], [STRANGER_ADDRESS, 5]),
    }

    token = decoder.decode_transaction(tx)["decoding"].values["token"]

    assert not token.known
    assert token.address.lower() == STRANGER_ADDRESS


def test_unmatched_selector_is_a_message(decoder):
    tx = {"to": VAULT_ADDRESS, "blockNumber": 100, "input": "0xdeadbeef"}

    decoding = decoder.decode_transaction(tx)["decoding"]

    assert isinstance(decoding, MessageDecoding)
    assert decoding.class_name == "Vault"
    assert decoding.payable
    assert decoding.data == bytes.fromhex("deadbeef")


def test_unknown_contract_gives_unknown_decoding(decoder):
    tx = {"to": STRANGER_ADDRESS, "blockNumber": 100, "input": "0xa9059cbb"}

    decoding = decoder.decode_transaction(tx)["decoding"]

    assert isinstance(decoding, UnknownDecoding)
    assert decoding.data == bytes.fromhex("a9059cbb")


def test_truncated_arguments_give_unknown_decoding(decoder):
    tx = {"to": TOKEN_ADDRESS, "blockNumber": 100, "input": "0xa9059cbb" + "00" * 10}

    decoding = decoder.decode_transaction(tx)["decoding"]

    assert isinstance(decoding, UnknownDecoding)
    assert decoding.error


REGISTRY_ADDRESS = "0x" + "55" * 20
REGISTRY_RUNTIME = "6080604052" + "9a" * 12
REGISTRY_ABI = [
    {
        "type": "function",
        "name": "setName",
        "inputs": [{"name": "name", "type": "string", "internalType": "string"}],
        "outputs": [],
        "stateMutability": "nonpayable",
    },
    {
        "type": "event",
        "name": "Named",
        "anonymous": False,
        "inputs": [{"name": "name", "type": "string", "indexed": False, "internalType": "string"}],
    },
]


@pytest.fixture
def registry_decoder():
    artifact = make_artifact("Registry", 40, REGISTRY_ABI, "6080604052" + "9b" * 4, REGISTRY_RUNTIME)
    transport = FakeTransport(code={REGISTRY_ADDRESS: bytes.fromhex(REGISTRY_RUNTIME)})
    return WireDecoder.from_artifacts([artifact], transport)


def test_string_argument_decodes(registry_decoder):
    tx = {"to": REGISTRY_ADDRESS, "blockNumber": 100, "input": _calldata("setName(string)", ["string"], ["vault"])}

    assert registry_decoder.decode_transaction(tx)["decoding"].values == {"name": "vault"}


def test_invalid_utf8_string_in_calldata_gives_unknown_decoding(registry_decoder):
    tx = {"to": REGISTRY_ADDRESS, "blockNumber": 100, "input": _calldata("setName(string)", ["bytes"], [b"\xff\xfe"])}

    decoding = registry_decoder.decode_transaction(tx)["decoding"]

    assert isinstance(decoding, UnknownDecoding)
    assert decoding.error


def test_invalid_utf8_string_in_log_drops_the_candidate(registry_decoder):
    good = make_log(REGISTRY_ADDRESS, "Named(string)", [], ["string"], ["vault"])
    bad = make_log(REGISTRY_ADDRESS, "Named(string)", [], ["bytes"], [b"\xff\xfe"], log_index=1)

    decoded = registry_decoder.decode_logs([good, bad])

    assert decoded[0]["decodings"][0].values == {"name": "vault"}
    assert decoded[1]["decodings"] == []


def test_code_fetch_failure_fails_the_decode(artifacts):
    transport = FakeTransport(code=deployed_code(), failing=[TOKEN_ADDRESS])
    decoder = WireDecoder.from_artifacts(artifacts, transport)

    with pytest.raises(TransportError):
        decoder.decode_transaction({"to": TOKEN_ADDRESS, "blockNumber": 1, "input": "0x"})


def test_decode_transaction_by_hash(decoder, transport):
    tx = {"hash": "0x" + "cd" * 32, "to": TOKEN_ADDRESS, "blockNumber": "0x1", "input": "0xdeadbeef"}
    transport.get_transaction_by_hash = lambda tx_hash: tx if tx_hash == tx["hash"] else None

    assert decoder.decode_transaction_by_hash(tx["hash"])["decoding"].class_name == "Token"
    with pytest.raises(ValueError):
        decoder.decode_transaction_by_hash("0x" + "00" * 32)


def test_decode_log(decoder):
    decoded = decoder.decode_log(transfer_log(value=42))

    assert decoded["address"] == TOKEN_ADDRESS
    [decoding] = decoded["decodings"]
    assert isinstance(decoding, EventDecoding)
    assert decoding.name == "Transfer"
    assert decoding.class_name == "Token"
    assert decoding.values == {"from": to_checksum_address(ALICE), "to": to_checksum_address(BOB), "value": 42}
    assert [argument.indexed for argument in decoding.arguments] == [True, True, False]


def test_decode_log_name_filter(decoder):
    assert decoder.decode_log(approval_log(), name="Transfer")["decodings"] == []
    assert len(decoder.decode_log(approval_log(), name="Approval")["decodings"]) == 1


def test_library_event_emitted_through_linked_contract(decoder):
    log = make_log(VAULT_ADDRESS, "Computed(uint256)", [], ["uint256"], [9])

    [decoding] = decoder.decode_log(log)["decodings"]

    assert decoding.class_name == "MathLib"
    assert decoding.values == {"result": 9}


def test_unknown_emitter_gets_every_candidate(decoder):
    decodings = decoder.decode_log(transfer_log(address=STRANGER_ADDRESS))["decodings"]

    assert [d.class_name for d in decodings] == ["Token"]


def test_log_with_wrong_topic_count_has_no_decodings(decoder):
    log = transfer_log()
    log["topics"] = log["topics"][:2]

    assert decoder.decode_log(log)["decodings"] == []


def test_anonymous_log_has_no_decodings(decoder):
    log = transfer_log()
    log["topics"] = []

    assert decoder.decode_log(log)["decodings"] == []


def test_decode_logs_keeps_input_order(artifacts):
    transport = FakeTransport(code=deployed_code(), delays={TOKEN_ADDRESS: 0.1})
    decoder = WireDecoder.from_artifacts(artifacts, transport)
    logs = [
        transfer_log(value=1, log_index=0),
        make_log(VAULT_ADDRESS, "Deposited(address,uint256)", [ALICE], ["uint256"], [2], log_index=1),
        make_log(VAULT_ADDRESS, "Computed(uint256)", [], ["uint256"], [3], log_index=2),
    ]

    decoded = decoder.decode_logs(logs)

    assert [entry["logIndex"] for entry in decoded] == ["0x0", "0x1", "0x2"]
    assert [entry["decodings"][0].name for entry in decoded] == ["Transfer", "Deposited", "Computed"]


def test_decode_logs_propagates_a_failure(artifacts):
    transport = FakeTransport(code=deployed_code(), failing=[VAULT_ADDRESS])
    decoder = WireDecoder.from_artifacts(artifacts, transport)
    logs = [transfer_log(), make_log(VAULT_ADDRESS, "Computed(uint256)", [], ["uint256"], [3])]

    with pytest.raises(TransportError):
        decoder.decode_logs(logs)


def test_decode_logs_of_nothing(decoder):
    assert decoder.decode_logs([]) == []


def test_events_filtered_by_name(artifacts):
    transport = FakeTransport(
        code=deployed_code(),
        logs=[transfer_log(value=1, log_index=0), approval_log(log_index=1), transfer_log(value=2, log_index=2)],
    )
    decoder = WireDecoder.from_artifacts(artifacts, transport)

    events = decoder.events(address=TOKEN_ADDRESS, from_block=0, to_block="latest", name="Transfer")

    assert [event["logIndex"] for event in events] == ["0x0", "0x2"]
    assert all(d.name == "Transfer" for event in events for d in event["decodings"])
    assert transport.log_calls == [(TOKEN_ADDRESS, 0, "latest")]


def test_events_without_name_keep_everything(artifacts):
    transport = FakeTransport(code=deployed_code(), logs=[transfer_log(), approval_log()])
    decoder = WireDecoder.from_artifacts(artifacts, transport)

    events = decoder.events(address=TOKEN_ADDRESS)

    assert [event["decodings"][0].name for event in events] == ["Transfer", "Approval"]


def test_code_is_fetched_once_per_address_and_block(artifacts):
    transport = FakeTransport(code=deployed_code())
    decoder = WireDecoder.from_artifacts(artifacts, transport)

    decoder.decode_logs([transfer_log(log_index=i) for i in range(5)])

    assert transport.code_calls == [(TOKEN_ADDRESS, 100)]


def test_additional_contexts_extend_resolution(decoder):
    extra = make_context(
        ContractDefinition(id=TOKEN_ID, name="Token", kind="contract", deployed_bytecode=deployed_code()[STRANGER_ADDRESS])
    )
    tx = {
        "to": STRANGER_ADDRESS,
        "blockNumber": 100,
        "input": _calldata("transfer(address,uint256)", ["address", "uint256"], [BOB, 1]),
    }

    decoding = decoder.decode_transaction(tx, additional_contexts={TOKEN_ID: extra})["decoding"]

    assert decoding.name == "transfer"


def test_event_listeners(decoder):
    seen = []
    decoder.on_event("Transfer", seen.append)

    decoder.decode_log(transfer_log())
    decoder.decode_log(approval_log())
    assert [entry["decodings"][0].name for entry in seen] == ["Transfer"]

    decoder.remove_event_listener("Transfer")
    decoder.decode_log(transfer_log())
    assert len(seen) == 1


def test_failing_listener_does_not_lose_decodings(decoder, caplog):
    seen = []

    def broken(decoded):
        raise RuntimeError("listener bug")

    decoder.on_event("Transfer", broken)
    decoder.on_event("Transfer", seen.append)

    decoded = decoder.decode_logs([transfer_log(value=1), transfer_log(value=2, log_index=1)])

    assert [entry["decodings"][0].values["value"] for entry in decoded] == [1, 2]
    assert len(seen) == 2
    assert "listener bug" in caplog.text


def test_accessors(decoder):
    contexts = decoder.get_contexts()

    assert set(contexts) == {"by_hash", "by_id", "constructors_by_id"}
    assert contexts["by_id"][VAULT_ID].contract_name == "Vault"
    assert decoder.get_user_defined_types()[13].qualified_name == "Token.Checkpoint"
    assert decoder.get_user_defined_types()[14].options == ("Active", "Paused")
    assert decoder.get_reference_declarations()[TOKEN_ID]["name"] == "Token"
    assert 13 in decoder.get_abi_allocations()
    assert decoder.get_allocations().storage[TOKEN_ID][0].name == "totalSupply"
    assert decoder.get_code(MATHLIB_ADDRESS, 100) == deployed_code()[MATHLIB_ADDRESS]
