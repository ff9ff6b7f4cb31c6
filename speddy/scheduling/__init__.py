"""
Pure scheduling logic.

Time arithmetic, conflict detection, instance materialization and
role-based filtering. Nothing in this package touches the database.
"""
