# paygate/x402/__init__.py
"""
x402 Payment Protocol Integration Module.

This module gates the fortune endpoint behind the x402 "exact" scheme,
settling EIP-3009 transfer authorizations on-chain before the resource is
released.

Key components:
- requirements: payment requirements (402 challenge) issuer
- codec: X-PAYMENT header decoding and structural validation
- settlement: settlement attempts and on-chain submission via the relay
- watcher: bounded polling of the submitted batch to a terminal status
- gate: per-request orchestration of the above
- middleware: FastAPI middleware applying the gate to protected routes
- audit: payment event audit log

Configuration is loaded from environment variables via paygate.core.config.
"""

__version__ = "0.1.0"
