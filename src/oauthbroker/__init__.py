"""OAuth2 broker gateway.

Sits between third-party client applications and a single upstream identity
provider and issues its own opaque bearer tokens for the upstream-verified
email identity.
"""

__version__ = "0.1.0"
