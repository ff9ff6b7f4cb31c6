"""
Domain layer - Core scheduling entities and domain errors.

This layer contains the fundamental business objects,
independent of any infrastructure or framework concerns.
"""
