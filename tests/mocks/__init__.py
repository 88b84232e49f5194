"""Test doubles for external collaborators.

Only out-of-process concerns (authenticators, code delivery) are replaced;
storage and verification run the real implementations.
"""
