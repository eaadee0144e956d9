"""
Domain layer for the email tracking feature.
"""
