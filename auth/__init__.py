"""auth/ -- Authentication package for ApexGate.

Credentials (JWT access/refresh tokens, bcrypt passwords), the user store,
the Session Validator and the FastAPI dependencies built on it.

Layer rule: auth/ imports only core/, stdlib and third-party libraries.
It does NOT import from api/, authz/, tenancy/, or audit/.
api/ imports from auth/, not the other way around.
"""
