"""PassKey Auth test suite.

Ceremonies are exercised end to end with a software authenticator that
produces real attestation objects and ES256 signatures.
"""
