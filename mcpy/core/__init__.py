"""
Core module for mcpy
Async runtime, JSON-RPC protocol, dispatcher, endpoint and transports
"""
