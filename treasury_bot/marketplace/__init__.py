"""
Marketplace integration.

- `opensea`: resolve listings and build purchase calldata
- `seaport`: exchange calldata (fulfill / validate) and conduit resolution
- `order_hash`: EIP-712 order hashing
- `relist`: relisting an acquired asset from the treasury
"""
