"""
Permission store feature module.

Per-user, per-resource, per-scope grants carrying the three delegation bits
(permission, set_permission, set_set_permission), and the evaluation and
delegation checks built on them.
"""
