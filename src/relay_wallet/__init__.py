"""relay-wallet: a remotely operated WalletConnect wallet.

An operator pairs the wallet with a dApp, negotiates the session's
namespaces, and approves or rejects each signing request the dApp sends,
over an HTTP API or the ``relay-wallet`` CLI.
"""

__version__ = "0.1.0"
