"""Bootstrap deployment of bridgehub and hyperchain contracts.

Deploys a fixed sequence of contracts from one account,
tracking its nonce and gas price locally. See :py:mod:`hyperchain_bootstrap.deployer`.
"""
