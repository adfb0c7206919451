import threading
import time

import pytest
from eth_abi import encode
from eth_utils import keccak

from wire_decoder import TransportError, WireDecoder, load_definitions

TOKEN_ADDRESS = "0x" + "11" * 20
VAULT_ADDRESS = "0x" + "22" * 20
MATHLIB_ADDRESS = "0x" + "33" * 20
ALICE = "0x" + "a1" * 20
BOB = "0x" + "b0" * 20
STRANGER_ADDRESS = "0x" + "44" * 20


def placeholder(name):
    """A 40-character textual library placeholder as solc emits it."""
    return ("__" + name).ljust(38, "_") + "__"


MATHLIB_PLACEHOLDER = placeholder("MathLib")

TOKEN_CREATION = "6080604052" + "aa" * 10 + "f3"
TOKEN_RUNTIME = "6080604052" + "bb" * 12
VAULT_CREATION = "6080604052" + "cc" * 4 + "73" + MATHLIB_PLACEHOLDER + "dd" * 4
VAULT_RUNTIME = "6080604052" + "73" + MATHLIB_PLACEHOLDER + "ee" * 8
MATHLIB_CREATION = "6080" + "ab" * 8
MATHLIB_RUNTIME = "73" + "00" * 20 + "3014" + "ff" * 6

TOKEN_ID = 10
VAULT_ID = 20
MATHLIB_ID = 30

TOKEN_ABI = [
    {"type": "constructor", "inputs": [{"name": "supply", "type": "uint256", "internalType": "uint256"}]},
    {
        "type": "function",
        "name": "transfer",
        "inputs": [
            {"name": "to", "type": "address", "internalType": "address"},
            {"name": "amount", "type": "uint256", "internalType": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
    },
    {
        "type": "event",
        "name": "Transfer",
        "anonymous": False,
        "inputs": [
            {"name": "from", "type": "address", "indexed": True, "internalType": "address"},
            {"name": "to", "type": "address", "indexed": True, "internalType": "address"},
            {"name": "value", "type": "uint256", "indexed": False, "internalType": "uint256"},
        ],
    },
    {
        "type": "event",
        "name": "Approval",
        "anonymous": False,
        "inputs": [
            {"name": "owner", "type": "address", "indexed": True, "internalType": "address"},
            {"name": "spender", "type": "address", "indexed": True, "internalType": "address"},
            {"name": "value", "type": "uint256", "indexed": False, "internalType": "uint256"},
        ],
    },
]

VAULT_ABI = [
    {
        "type": "function",
        "name": "deposit",
        "inputs": [
            {"name": "token", "type": "address", "internalType": "contract Token"},
            {"name": "amount", "type": "uint256", "internalType": "uint256"},
        ],
        "outputs": [],
        "stateMutability": "nonpayable",
    },
    {
        "type": "event",
        "name": "Deposited",
        "anonymous": False,
        "inputs": [
            {"name": "who", "type": "address", "indexed": True, "internalType": "address"},
            {"name": "amount", "type": "uint256", "indexed": False, "internalType": "uint256"},
        ],
    },
    {"type": "fallback", "stateMutability": "payable"},
]

MATHLIB_ABI = [
    {
        "type": "event",
        "name": "Computed",
        "anonymous": False,
        "inputs": [{"name": "result", "type": "uint256", "indexed": False, "internalType": "uint256"}],
    },
]


def state_variable(node_id, name, type_string):
    return {
        "nodeType": "VariableDeclaration",
        "id": node_id,
        "name": name,
        "stateVariable": True,
        "constant": False,
        "typeDescriptions": {"typeString": type_string},
    }


def make_artifact(name, node_id, abi, bytecode, deployed, kind="contract", nodes=(), bases=None):
    node = {
        "nodeType": "ContractDefinition",
        "id": node_id,
        "name": name,
        "contractKind": kind,
        "linearizedBaseContracts": bases or [node_id],
        "nodes": list(nodes),
    }
    return {
        "contractName": name,
        "abi": abi,
        "ast": {"nodeType": "SourceUnit", "nodes": [node]},
        "bytecode": "0x" + bytecode if bytecode else "0x",
        "deployedBytecode": "0x" + deployed if deployed else "0x",
        "compiler": {"name": "solc", "version": "0.5.16"},
    }


TOKEN_NODES = [
    state_variable(11, "totalSupply", "uint256"),
    state_variable(12, "balances", "mapping(address => uint256)"),
    {
        "nodeType": "StructDefinition",
        "id": 13,
        "name": "Checkpoint",
        "canonicalName": "Token.Checkpoint",
        "members": [
            {"name": "fromBlock", "typeDescriptions": {"typeString": "uint128"}},
            {"name": "votes", "typeDescriptions": {"typeString": "uint128"}},
        ],
    },
    {
        "nodeType": "EnumDefinition",
        "id": 14,
        "name": "Status",
        "members": [{"name": "Active"}, {"name": "Paused"}],
    },
]


@pytest.fixture
def artifacts():
    return [
        make_artifact("Token", TOKEN_ID, TOKEN_ABI, TOKEN_CREATION, TOKEN_RUNTIME, nodes=TOKEN_NODES),
        make_artifact("Vault", VAULT_ID, VAULT_ABI, VAULT_CREATION, VAULT_RUNTIME),
        make_artifact("MathLib", MATHLIB_ID, MATHLIB_ABI, MATHLIB_CREATION, MATHLIB_RUNTIME, kind="library"),
    ]


@pytest.fixture
def definitions(artifacts):
    return load_definitions(artifacts)


def linked(hex_code, library_address):
    return hex_code.replace(MATHLIB_PLACEHOLDER, library_address[2:])


def deployed_code():
    return {
        TOKEN_ADDRESS: bytes.fromhex(TOKEN_RUNTIME),
        VAULT_ADDRESS: bytes.fromhex(linked(VAULT_RUNTIME, MATHLIB_ADDRESS)),
        MATHLIB_ADDRESS: bytes.fromhex("73" + MATHLIB_ADDRESS[2:] + MATHLIB_RUNTIME[42:]),
        STRANGER_ADDRESS: bytes.fromhex("60016002" + "99" * 30),
    }


class FakeTransport:
    """In-memory chain: fixed code per address, a list of logs, call counters."""

    def __init__(self, code=None, logs=(), delays=None, failing=()):
        self.code = {address.lower(): value for address, value in (code or {}).items()}
        self.logs = list(logs)
        self.delays = delays or {}
        self.failing = {address.lower() for address in failing}
        self.code_calls = []
        self.log_calls = []
        self._lock = threading.Lock()

    def get_code(self, address, block=None):
        with self._lock:
            self.code_calls.append((address.lower(), block))
        if address.lower() in self.failing:
            raise TransportError(f"eth_getCode failed for {address}", method="eth_getCode")
        delay = self.delays.get(address.lower())
        if delay:
            time.sleep(delay)
        return self.code.get(address.lower(), b"")

    def get_past_logs(self, address=None, from_block=None, to_block=None):
        self.log_calls.append((address, from_block, to_block))
        return [log for log in self.logs if address is None or log["address"].lower() == address.lower()]


@pytest.fixture
def transport():
    return FakeTransport(code=deployed_code())


@pytest.fixture
def decoder(artifacts, transport):
    return WireDecoder.from_artifacts(artifacts, transport)


def topic_of(signature):
    return "0x" + keccak(text=signature).hex()


def address_topic(address):
    return "0x" + encode(["address"], [address]).hex()


def make_log(address, signature, indexed_addresses, data_types, data_values, block=100, log_index=0):
    return {
        "address": address,
        "blockNumber": hex(block),
        "logIndex": hex(log_index),
        "topics": [topic_of(signature)] + [address_topic(a) for a in indexed_addresses],
        "data": "0x" + encode(data_types, data_values).hex(),
    }


def transfer_log(value=5, block=100, log_index=0, address=TOKEN_ADDRESS):
    return make_log(address, "Transfer(address,address,uint256)", [ALICE, BOB], ["uint256"], [value],
                    block=block, log_index=log_index)


def approval_log(value=7, block=100, log_index=1):
    return make_log(TOKEN_ADDRESS, "Approval(address,address,uint256)", [ALICE, BOB], ["uint256"], [value],
                    block=block, log_index=log_index)
