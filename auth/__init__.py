"""auth/ -- Authentication package for Nevi.

Layer rule: auth/ imports from core/, store/ and activity/ only.
It does NOT import from api/ or web/.
api/ and web/ import from auth/, not the other way around.
"""
