"""
Role template feature module.

Named bundles of default grants, applied to a user and scope when a group is
created, a member is added or a user registers.
"""
