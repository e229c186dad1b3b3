"""
Capability registry feature module.

Catalog of resources and the access types each of them supports.
"""
