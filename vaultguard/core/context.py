# vaultguard/core/context.py

import contextvars

correlation_id_ctx = contextvars.ContextVar("correlation_id", default=None)
client_ip_ctx = contextvars.ContextVar("client_ip", default=None)
user_agent_ctx = contextvars.ContextVar("user_agent", default=None)
session_id_ctx = contextvars.ContextVar("session_id", default=None)
actor_id_ctx = contextvars.ContextVar("actor_id", default=None)
