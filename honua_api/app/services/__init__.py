"""
Service layer.

Each service encapsulates the business rules for a domain: point
awarding, stock reservation, analytics aggregation and so on.  API
handlers stay thin and delegate here.
"""
