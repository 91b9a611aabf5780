"""auth/ -- Authentication and authorization package for AuthCore.

Layer rule: auth/ imports stdlib, third-party libraries and core/config.
It does NOT import from api/. api/ imports from auth/, not the other way
around. auth/dependencies.py is the only module that knows about FastAPI.
"""
