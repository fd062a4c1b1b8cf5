"""auth/ -- Authentication package for the VPlan server.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/, web/ or vplan/.
api/ and web/ import from auth/, not the other way around.
"""
