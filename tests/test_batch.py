"""
Tests for batch dispatch.
"""
from rpc_cache.batch import BatchDispatcher
from rpc_cache.errors import INTERNAL_ERROR, METHOD_NOT_FOUND, PARSE_ERROR
from rpc_cache.schemas import RpcResponse

from conftest import WALLET


def _request(request_id, method, params=None):
    return {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params or []}


class TestBatchDispatcher:

    def test_responses_follow_request_order(self, orchestrator):
        dispatcher = BatchDispatcher(orchestrator.process, max_workers=4)
        responses = dispatcher.dispatch([
            _request(3, "getSlot"),
            _request(1, "getBalance", [WALLET]),
            _request(2, "getSlot"),
        ])
        assert [r.id for r in responses] == [3, 1, 2]
        assert all(r.ok for r in responses)

    def test_requests_grouped_by_method(self, orchestrator, upstream):
        dispatcher = BatchDispatcher(orchestrator.process)
        dispatcher.dispatch([
            _request(1, "getVersion"),
            _request(2, "getBalance", [WALLET]),
            _request(3, "getVersion"),
        ])
        methods = [method for method, _ in upstream.calls]
        # Every getVersion call finishes before the getBalance group starts
        assert methods[-1] == "getBalance"

    def test_empty_batch(self, orchestrator):
        assert BatchDispatcher(orchestrator.process).dispatch([]) == []

    def test_malformed_elements_keep_their_slot(self, orchestrator):
        responses = BatchDispatcher(orchestrator.process).dispatch([
            _request(1, "getSlot"),
            "garbage",
            {"id": 7, "params": []},
            _request(2, "unknownMethod"),
        ])
        assert len(responses) == 4
        assert responses[0].ok
        assert responses[1].error["code"] == PARSE_ERROR and responses[1].id is None
        assert responses[2].error["code"] == PARSE_ERROR and responses[2].id == 7
        assert responses[3].error["code"] == METHOD_NOT_FOUND

    def test_int_and_string_ids_are_distinct(self, orchestrator, upstream):
        upstream.results["getSlot"] = 10
        upstream.results["getVersion"] = {"solana-core": "1.18"}
        responses = BatchDispatcher(orchestrator.process).dispatch([
            _request(1, "getSlot"),
            _request("1", "getVersion"),
        ])
        assert responses[0].result == 10
        assert responses[1].result == {"solana-core": "1.18"}

    def test_duplicate_ids_share_the_first_response(self, orchestrator, upstream):
        upstream.results["getSlot"] = 10
        upstream.results["getVersion"] = {"solana-core": "1.18"}
        responses = BatchDispatcher(orchestrator.process).dispatch([
            _request(5, "getSlot"),
            _request(5, "getVersion"),
        ])
        assert len(responses) == 2
        assert responses[0].result == responses[1].result == 10

    def test_processor_crash_yields_internal_error(self):
        def explode(request):
            if request.method == "getSlot":
                raise RuntimeError("boom")
            return RpcResponse(id=request.id, result="ok")

        responses = BatchDispatcher(explode).dispatch([
            _request(1, "getSlot"),
            _request(2, "getVersion"),
        ])
        assert responses[0].error["code"] == INTERNAL_ERROR
        assert responses[1].result == "ok"
