"""auth/ -- Credential-to-token authentication core for AuthGate.

Layer rule: auth/ imports only stdlib + third-party libraries.
It does NOT import from api/ or core/; settings arrive as constructor
arguments. api/ imports from auth/, not the other way around.
"""
