"""
Clients for the external services the gateway delegates to:
identity verification and image inference.
"""
