"""
Backend package for the ScholarAgent application.

Contains citation reconciliation, the Gemini gateway, database
operations, reference exporters and the HTTP API server.
"""
