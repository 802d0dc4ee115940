"""
Infrastructure: logging, notifications, artifact export, credentials.
"""
