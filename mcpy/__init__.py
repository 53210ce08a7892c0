"""
mcpy: JSON-RPC 2.0 protocol SDK
Cooperative coroutine runtime plus a message correlation and dispatch engine
"""

from .config import MCPyConfig, get_config, load_config, reset_config
from .core.asyncops import (
    Generator, GeneratorExhausted, ObjectArena, ProducerFaultError, Promise, Task,
    generator, sync_wait, task, when_all
)
from .core.dispatcher import Dispatcher, ExecutionContext, current_context, is_cancelled, report_progress
from .core.endpoint import Endpoint, PendingRequest, SessionState
from .core.protocol import ErrorCode, ProtocolError
from .core.transport import InMemoryTransport, StdioTransport, Transport, bind_endpoint, create_in_memory_pair

__version__ = "0.1.0"

__all__ = [
    'MCPyConfig',
    'get_config',
    'load_config',
    'reset_config',
    'Generator',
    'GeneratorExhausted',
    'ObjectArena',
    'ProducerFaultError',
    'Promise',
    'Task',
    'generator',
    'sync_wait',
    'task',
    'when_all',
    'Dispatcher',
    'ExecutionContext',
    'current_context',
    'is_cancelled',
    'report_progress',
    'Endpoint',
    'PendingRequest',
    'SessionState',
    'ErrorCode',
    'ProtocolError',
    'InMemoryTransport',
    'StdioTransport',
    'Transport',
    'bind_endpoint',
    'create_in_memory_pair',
]
