"""auth/ -- SRP-6a authentication and token session package.

Layer rule: auth/ imports stdlib, third-party libraries and core/.
It does NOT import from api/ or cache/ -- stores are injected.
api/ imports from auth/, not the other way around.
"""
