"""Request registry and auto-subagent routing"""
from .active_requests import ActiveRequestRecord, ActiveRequestRegistry
from .subagent_router import SubagentSession, RequestLease, SubagentRouter

__all__ = [
    'ActiveRequestRecord', 'ActiveRequestRegistry',
    'SubagentSession', 'RequestLease', 'SubagentRouter'
]
