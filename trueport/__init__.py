"""
TruePort - verified portfolio platform.

Users make claims about their experience, education and projects, send
them to a named verifier for approval, and join institutions under an
approval gate. The `client` package reconciles the several ways a sign-in
can arrive into one session.
"""

__version__ = "0.1.0"
