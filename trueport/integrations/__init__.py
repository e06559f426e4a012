"""
Third-party integrations: Google OAuth, AWS SES email, Sentry.
"""
