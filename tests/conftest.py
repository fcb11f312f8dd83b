import json

import httpx
import pytest
from prometheus_client import CollectorRegistry

from pharos_exporter.metrics import MetricsState
from pharos_exporter.rpc import RpcClient

MY_KEY = "0x" + "ab" * 48
OTHER_KEY = "0x" + "cd" * 48
MY_ADDRESS = "0x" + "1f" * 20


class FakeChain:
    """In-memory Pharos node answering the JSON-RPC methods the exporter uses."""

    def __init__(self, tip=0):
        self.tip = tip
        self.proofs = {}        # height -> [bls keys]
        self.validators = {}    # height -> [bls keys]
        self.balance_wei = 0
        self.fail = {}          # method -> error dict
        self.requests = []

    def _result(self, method, params):
        if method == "eth_blockNumber":
            return hex(self.tip)
        if method == "debug_getBlockProof":
            h = int(params[0], 16)
            if h not in self.proofs:
                return None
            return {
                "blockNumber": params[0],
                "blockProofHash": "0x" + "00" * 32,
                "blsAggregatedSignature": "0x",
                "signedBlsKeys": self.proofs[h],
            }
        if method == "debug_getValidatorInfo":
            h = int(params[0], 16)
            if h not in self.validators:
                return None
            return {
                "blockNumber": params[0],
                "validatorSet": [{"blsKey": k, "validatorID": str(i)}
                                 for i, k in enumerate(self.validators[h])],
            }
        if method == "eth_getBalance":
            return hex(self.balance_wei)
        raise AssertionError(f"unexpected method {method}")

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        method = body["method"]
        if method in self.fail:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"],
                                             "error": self.fail[method]})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"],
                                         "result": self._result(method, body["params"])})

    def heights_requested(self, method):
        return [int(r["params"][0], 16) for r in self.requests if r["method"] == method]


@pytest.fixture
def registry():
    return CollectorRegistry()


@pytest.fixture
def metrics(registry):
    return MetricsState(registry)


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def rpc(chain):
    client = httpx.AsyncClient(transport=httpx.MockTransport(chain.handler))
    return RpcClient("http://node.test/", client=client)
