"""Wallet identities and signer backends.

A wallet is either a mnemonic/key-derived account signed for locally, or an
address the JSON-RPC node impersonates. Exactly one identity is live at a
time; the signer backend is chosen when it is created.
"""
