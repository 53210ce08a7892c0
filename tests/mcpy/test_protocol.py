"""
Tests for the JSON-RPC message model
Tests builders, validation, classification, error taxonomy and the codec
"""

import json
import pytest

# Add the project root to the path for imports
import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from mcpy.core.protocol import (
    ErrorCode, ProtocolError, JsonRpcRequest, JsonRpcResponse,
    check_request, check_response, validate_request, validate_response,
    is_request, is_notification, is_response,
    make_request, make_notification, make_result, make_error,
    parse_message, salvage_id, serialize
)


class TestErrorCode:
    """Test cases for the error taxonomy"""

    def test_standard_codes(self):
        """Test the standard JSON-RPC codes"""
        assert ErrorCode.PARSE_ERROR.value == -32700
        assert ErrorCode.INVALID_REQUEST.value == -32600
        assert ErrorCode.METHOD_NOT_FOUND.value == -32601
        assert ErrorCode.INVALID_PARAMS.value == -32602
        assert ErrorCode.INTERNAL_ERROR.value == -32603

    def test_cancellation_code(self):
        """Test the request cancelled extension code"""
        assert ErrorCode.REQUEST_CANCELLED.value == -32800


class TestProtocolError:
    """Test cases for ProtocolError"""

    def test_error_creation(self):
        """Test creating protocol errors"""
        error = ProtocolError(code=-32000, message="Custom failure", data={"retry": False})

        assert error.code == -32000
        assert error.message == "Custom failure"
        assert error.data == {"retry": False}
        assert str(error) == "[-32000] Custom failure"

    def test_error_serialization(self):
        """Test to_dict omits absent data"""
        assert ProtocolError(-32000, "x").to_dict() == {'code': -32000, 'message': 'x'}
        assert ProtocolError(-32000, "x", [1]).to_dict() == {'code': -32000, 'message': 'x', 'data': [1]}

    def test_error_from_dict(self):
        """Test rebuilding an error from its wire form"""
        error = ProtocolError.from_dict({'code': -32601, 'message': "Method 'x' not found"})
        assert error.code == ErrorCode.METHOD_NOT_FOUND.value
        assert error.data is None

    def test_constructors(self):
        """Test the named constructors pick the right codes"""
        assert ProtocolError.parse_error().code == -32700
        assert ProtocolError.invalid_request().code == -32600
        assert ProtocolError.invalid_params().code == -32602
        assert ProtocolError.internal_error().code == -32603
        assert ProtocolError.request_cancelled().code == -32800

        not_found = ProtocolError.method_not_found("tools/list")
        assert not_found.code == -32601
        assert "tools/list" in not_found.message

    def test_is_raisable(self):
        """Test ProtocolError works as an exception"""
        with pytest.raises(ProtocolError) as exc_info:
            raise ProtocolError.invalid_params("bad")
        assert exc_info.value.message == "bad"


class TestBuilders:
    """Test cases for message builders"""

    def test_make_request(self):
        """Test building a request"""
        assert make_request(1, "ping") == {'jsonrpc': '2.0', 'id': 1, 'method': 'ping'}
        assert make_request("a", "sum", [1, 2])['params'] == [1, 2]

    def test_make_request_without_id(self):
        """Test a missing id builds a notification"""
        message = make_request(None, "log", {"level": "info"})
        assert 'id' not in message
        assert is_notification(message)

    def test_make_notification(self):
        """Test building a notification"""
        assert make_notification("ready") == {'jsonrpc': '2.0', 'method': 'ready'}

    def test_make_result(self):
        """Test building a success response, including a null result"""
        assert make_result(3, {"ok": True}) == {'jsonrpc': '2.0', 'id': 3, 'result': {'ok': True}}
        assert 'result' in make_result(3, None)

    def test_make_error(self):
        """Test building an error response from an error or a dict"""
        response = make_error(None, ProtocolError.parse_error())
        assert response['id'] is None
        assert response['error']['code'] == -32700

        response = make_error("x", {'code': -32000, 'message': 'custom'})
        assert response['error'] == {'code': -32000, 'message': 'custom'}


class TestRequestValidation:
    """Test cases for request validation"""

    def test_valid_request(self):
        """Test a well formed request passes"""
        assert validate_request({'jsonrpc': '2.0', 'id': 1, 'method': 'x'})
        assert check_request({'jsonrpc': '2.0', 'id': 'abc', 'method': 'x', 'params': {}}) is None

    def test_empty_method_is_valid(self):
        """Test an empty method name is structurally valid"""
        assert validate_request({'jsonrpc': '2.0', 'id': 1, 'method': ''})

    def test_missing_version(self):
        """Test a request without jsonrpc is invalid"""
        error = check_request({'id': 1, 'method': 'x'})
        assert error.code == ErrorCode.INVALID_REQUEST.value

    def test_wrong_version(self):
        """Test other protocol versions are rejected"""
        error = check_request({'jsonrpc': '1.0', 'id': 1, 'method': 'x'})
        assert error.code == ErrorCode.INVALID_REQUEST.value

        with pytest.raises(ValueError, match="Only JSON-RPC 2.0 is supported"):
            JsonRpcRequest(jsonrpc="1.0", method="test", id="test")

    def test_method_must_be_string(self):
        """Test a numeric method is invalid"""
        error = check_request({'jsonrpc': '2.0', 'id': 1, 'method': 5})
        assert error.code == ErrorCode.INVALID_REQUEST.value

    @pytest.mark.parametrize("bad_id", [True, 1.5, [1], {"a": 1}])
    def test_bad_id_types(self, bad_id):
        """Test ids must be strings or integers"""
        error = check_request({'jsonrpc': '2.0', 'id': bad_id, 'method': 'x'})
        assert error.code == ErrorCode.INVALID_REQUEST.value

    def test_scalar_params(self):
        """Test params of the wrong type map to Invalid params"""
        error = check_request({'jsonrpc': '2.0', 'id': 1, 'method': 'x', 'params': 5})
        assert error.code == ErrorCode.INVALID_PARAMS.value

    def test_not_an_object(self):
        """Test non-object messages are invalid"""
        assert check_request([1, 2]).code == ErrorCode.INVALID_REQUEST.value
        assert check_request("x").code == ErrorCode.INVALID_REQUEST.value

    def test_salvage_id(self):
        """Test only valid ids are salvaged from broken messages"""
        assert salvage_id({'id': 7, 'method': 5}) == 7
        assert salvage_id({'id': 'x'}) == 'x'
        assert salvage_id({'id': True}) is None
        assert salvage_id({'id': 1.5}) is None
        assert salvage_id([1]) is None


class TestResponseValidation:
    """Test cases for response validation"""

    def test_valid_responses(self):
        """Test success and error responses pass"""
        assert validate_response({'jsonrpc': '2.0', 'id': 1, 'result': None})
        assert validate_response({'jsonrpc': '2.0', 'id': 1, 'error': {'code': -1, 'message': 'x'}})
        assert validate_response({'jsonrpc': '2.0', 'id': None, 'error': {'code': -32700, 'message': 'x'}})

    def test_both_result_and_error(self):
        """Test a response cannot carry both members"""
        error = check_response({'jsonrpc': '2.0', 'id': 1, 'result': 1,
                                'error': {'code': -1, 'message': 'x'}})
        assert error is not None
        assert "exactly one" in error.message

    def test_missing_id(self):
        """Test a response must carry an id member"""
        assert not validate_response({'jsonrpc': '2.0', 'result': 1})

    def test_malformed_error_object(self):
        """Test error members need an integer code and a string message"""
        assert not validate_response({'jsonrpc': '2.0', 'id': 1, 'error': {'code': 'x', 'message': 'y'}})
        assert not validate_response({'jsonrpc': '2.0', 'id': 1, 'error': {'code': 1}})

    def test_response_model(self):
        """Test the pydantic model enforces exactly one of result or error"""
        response = JsonRpcResponse(id=1, result=None)
        response.validate_response()

        with pytest.raises(ValueError, match="exactly one"):
            JsonRpcResponse(id=1).validate_response()


class TestClassification:
    """Test cases for message classification"""

    def test_request_and_notification(self):
        """Test notifications are also requests"""
        request = make_request(1, "x")
        notification = make_notification("x")

        assert is_request(request) and not is_notification(request)
        assert is_request(notification) and is_notification(notification)
        assert not is_response(request)
        assert not is_response(notification)

    def test_response(self):
        """Test responses are never requests"""
        response = make_result(1, "ok")
        assert is_response(response)
        assert not is_request(response)
        assert is_response(make_error(1, ProtocolError.internal_error()))

    def test_garbage(self):
        """Test non-objects are neither"""
        assert not is_request(42)
        assert not is_response([])


class TestCodec:
    """Test cases for serialization and parsing"""

    def test_serialize_compact(self):
        """Test messages serialize to compact JSON"""
        text = serialize(make_request(1, "ping"))
        assert " " not in text
        assert json.loads(text) == {'jsonrpc': '2.0', 'id': 1, 'method': 'ping'}

    def test_serialize_unicode(self):
        """Test non-ASCII text is kept as is"""
        assert "héllo" in serialize(make_result(1, "héllo"))

    def test_parse_batch(self):
        """Test a batch parses to a list"""
        parsed = parse_message('[{"jsonrpc":"2.0","method":"a"},{"jsonrpc":"2.0","method":"b"}]')
        assert isinstance(parsed, list)
        assert len(parsed) == 2

    def test_parse_error(self):
        """Test malformed JSON raises a Parse error"""
        with pytest.raises(ProtocolError) as exc_info:
            parse_message('{"jsonrpc": "2.0", "method": ')
        assert exc_info.value.code == ErrorCode.PARSE_ERROR.value
