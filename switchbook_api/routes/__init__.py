"""
HTTP blueprints for the Switchbook API.
"""
