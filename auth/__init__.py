"""auth/ -- Credentials, sessions and anti-forgery for Tollgate.

Layer rule: auth/ imports from core/ and cache/ only.
It does NOT import from api/ or catalog/.
api/ imports from auth/, not the other way around.
"""
