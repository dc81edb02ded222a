"""Infrastructure layer module.

Contains configuration, persistence, and adapters for Stripe and Airtable.
"""
