"""auth/ -- Identity, bearer token, registration, and authorization package for SocialGate.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/, mailer/, or posts/ at runtime.
api/ imports from auth/, not the other way around.
"""
