"""
Pydantic schema definitions for API payloads.

Schemas are separated from the SQL tables so the API representation can
evolve independently from persistence.
"""
