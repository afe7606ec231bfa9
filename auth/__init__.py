"""auth/ -- Authentication and token lifecycle package for FitTrack.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/ or workouts/.
api/ imports from auth/, not the other way around.
"""
