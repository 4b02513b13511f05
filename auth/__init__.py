"""auth/ -- Request identity for ClusterVuln.

Layer rule: auth/ imports only stdlib + third-party libraries, plus the
store it resolves accounts against (passed in through app.state).
It does NOT import from api/ or ams/.
api/ imports from auth/, not the other way around.
"""
