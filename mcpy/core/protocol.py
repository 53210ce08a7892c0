"""
JSON-RPC Protocol Definition for mcpy
Message builders, structural validation and error taxonomy for JSON-RPC 2.0
with the request cancellation extension
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, StrictInt, StrictStr, ValidationError, field_validator

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"

RequestId = Union[StrictStr, StrictInt]
Message = Dict[str, Any]


class ErrorCode(Enum):
    """Standard JSON-RPC error codes with mcpy extensions"""
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    # Extensions
    REQUEST_CANCELLED = -32800


@dataclass(eq=False)
class ProtocolError(Exception):
    """JSON-RPC error structure, raised by handlers to produce error responses"""
    code: int
    message: str
    data: Optional[Any] = None

    def __post_init__(self):
        """Initialize the Exception with the message"""
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        result = {
            'code': self.code,
            'message': self.message
        }
        if self.data is not None:
            result['data'] = self.data
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProtocolError':
        """Create from dictionary"""
        return cls(
            code=data['code'],
            message=data['message'],
            data=data.get('data')
        )

    @classmethod
    def parse_error(cls, message: str = "Parse error") -> 'ProtocolError':
        return cls(ErrorCode.PARSE_ERROR.value, message)

    @classmethod
    def invalid_request(cls, message: str = "Invalid Request") -> 'ProtocolError':
        return cls(ErrorCode.INVALID_REQUEST.value, message)

    @classmethod
    def method_not_found(cls, method: str) -> 'ProtocolError':
        return cls(ErrorCode.METHOD_NOT_FOUND.value, f"Method '{method}' not found")

    @classmethod
    def invalid_params(cls, message: str = "Invalid params") -> 'ProtocolError':
        return cls(ErrorCode.INVALID_PARAMS.value, message)

    @classmethod
    def internal_error(cls, message: str = "Internal error") -> 'ProtocolError':
        return cls(ErrorCode.INTERNAL_ERROR.value, message)

    @classmethod
    def request_cancelled(cls, message: str = "Request cancelled") -> 'ProtocolError':
        return cls(ErrorCode.REQUEST_CANCELLED.value, message)


class JsonRpcRequest(BaseModel):
    """JSON-RPC 2.0 request structure (a notification when id is absent)"""
    jsonrpc: StrictStr = Field(..., description="JSON-RPC version")
    method: StrictStr = Field(..., description="Method name")
    params: Optional[Union[Dict[str, Any], List[Any]]] = Field(default=None, description="Method parameters")
    id: Optional[RequestId] = Field(default=None, description="Request identifier")

    @field_validator('jsonrpc')
    @classmethod
    def validate_jsonrpc(cls, v):
        if v != JSONRPC_VERSION:
            raise ValueError("Only JSON-RPC 2.0 is supported")
        return v

    def is_notification(self) -> bool:
        """Check if this is a notification (no id)"""
        return self.id is None


class JsonRpcErrorObject(BaseModel):
    """Error member of an error response"""
    code: StrictInt
    message: StrictStr
    data: Optional[Any] = None


class JsonRpcResponse(BaseModel):
    """JSON-RPC 2.0 response structure"""
    jsonrpc: Optional[str] = Field(default=JSONRPC_VERSION, description="JSON-RPC version")
    id: Optional[RequestId] = Field(..., description="Request identifier")
    result: Optional[Any] = Field(default=None, description="Method result")
    error: Optional[JsonRpcErrorObject] = Field(default=None, description="Error information")

    def validate_response(self):
        """Validate response structure"""
        has_result = 'result' in self.model_fields_set
        has_error = 'error' in self.model_fields_set and self.error is not None
        if has_result and has_error:
            raise ValueError("Response must have exactly one of result or error, got both")
        if not has_result and not has_error:
            raise ValueError("Response must have exactly one of result or error, got neither")


def _describe(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(part) for part in err.get('loc', ())) or "message"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


def salvage_id(message: Any) -> Optional[Union[str, int]]:
    """Return the message id if it has a valid type, else None"""
    if isinstance(message, dict):
        rpc_id = message.get('id')
        if isinstance(rpc_id, (str, int)) and not isinstance(rpc_id, bool):
            return rpc_id
    return None


def check_request(message: Any) -> Optional[ProtocolError]:
    """Return the error describing why message is not a valid request, or None"""
    if not isinstance(message, dict):
        return ProtocolError.invalid_request("Invalid request: message must be an object")
    try:
        JsonRpcRequest.model_validate(message)
    except ValidationError as e:
        locations = {err['loc'][0] for err in e.errors() if err.get('loc')}
        if locations == {'params'}:
            return ProtocolError.invalid_params(
                f"Invalid params: params must be an object or array ({_describe(e)})"
            )
        return ProtocolError.invalid_request(f"Invalid request: {_describe(e)}")
    return None


def validate_request(message: Any) -> bool:
    """Check whether message is a structurally valid request or notification"""
    return check_request(message) is None


def check_response(message: Any) -> Optional[ProtocolError]:
    """Return the error describing why message is not a valid response, or None"""
    if not isinstance(message, dict):
        return ProtocolError.invalid_request("Invalid response: message must be an object")
    if 'id' not in message:
        return ProtocolError.invalid_request("Invalid response: missing id")
    if ('result' in message) == ('error' in message):
        return ProtocolError.invalid_request(
            "Invalid response: must contain exactly one of result or error"
        )
    try:
        JsonRpcResponse.model_validate(message).validate_response()
    except ValidationError as e:
        return ProtocolError.invalid_request(f"Invalid response: {_describe(e)}")
    except ValueError as e:
        return ProtocolError.invalid_request(f"Invalid response: {e}")
    return None


def validate_response(message: Any) -> bool:
    """Check whether message is a structurally valid response"""
    return check_response(message) is None


def is_request(message: Any) -> bool:
    """Requests and notifications both carry a method"""
    return isinstance(message, dict) and 'method' in message


def is_notification(message: Any) -> bool:
    return is_request(message) and message.get('id') is None


def is_response(message: Any) -> bool:
    return (
        isinstance(message, dict)
        and 'method' not in message
        and ('result' in message or 'error' in message)
    )


# Utility functions for common protocol operations
def make_request(request_id: Optional[Union[str, int]], method: str,
                 params: Optional[Union[Dict, List]] = None) -> Message:
    """Create a JSON-RPC request; a None id yields a notification"""
    message: Message = {'jsonrpc': JSONRPC_VERSION}
    if request_id is not None:
        message['id'] = request_id
    message['method'] = method
    if params is not None:
        message['params'] = params
    return message


def make_notification(method: str, params: Optional[Union[Dict, List]] = None) -> Message:
    """Create a JSON-RPC notification (no id)"""
    return make_request(None, method, params)


def make_result(request_id: Optional[Union[str, int]], result: Any) -> Message:
    """Create a successful JSON-RPC response"""
    return {'jsonrpc': JSONRPC_VERSION, 'id': request_id, 'result': result}


def make_error(request_id: Optional[Union[str, int]],
               error: Union[ProtocolError, Dict[str, Any]]) -> Message:
    """Create an error JSON-RPC response"""
    if isinstance(error, ProtocolError):
        error = error.to_dict()
    return {'jsonrpc': JSONRPC_VERSION, 'id': request_id, 'error': error}


def serialize(message: Union[Message, List[Message]]) -> str:
    """Serialize a message or batch to compact JSON"""
    return json.dumps(message, ensure_ascii=False, separators=(',', ':'))


def parse_message(text: Union[str, bytes]) -> Any:
    """Deserialize one JSON message or batch"""
    try:
        return json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolError.parse_error(f"Parse error: {e}")
