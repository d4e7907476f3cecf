"""auth/ -- Credential, token and persistence primitives for AccountKit.

Layer rule: auth/ imports only stdlib + third-party libraries and
core/errors.py. It does NOT import from api/ or accounts/, and it never
reads core.config directly; configuration values arrive as constructor
arguments. api/ and accounts/ import from auth/, not the other way around.
"""
