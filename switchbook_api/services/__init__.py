"""
Business logic for the Switchbook API, kept separate from the HTTP routes.
"""
