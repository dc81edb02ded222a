"""Storefront checkout service.

Session checkout, Stripe payment intents, webhook handling and order
recording to the database and Airtable.
"""
