"""
Services module.

Provides the business logic behind the geo analysis API.
"""
