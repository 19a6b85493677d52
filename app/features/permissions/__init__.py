"""
Permission management feature module.

Organization-scoped capabilities: a static catalog, explicit per-member
grants, role defaults, and the resolver every authorization decision goes
through.
"""
