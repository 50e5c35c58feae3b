"""
meshtrust_core
==============
Peer trust and authentication for a mesh VPN node.

Provides:
- Ed25519 node identity and peer id derivation
- Challenge/response proof of key possession with anti-replay checks
- Persistent trust store (SQLite default) with an approval state machine
- Auth engine driving per-connection handshakes and operator decisions
- Forwarding gate consulted by the packet router
"""
