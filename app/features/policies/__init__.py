"""
Route policy feature module.

Binds HTTP routes to the resource and access types a caller must hold, and
enforces them per request.
"""
