"""BookSmart - Services Package

- Eligibility engine: reservation create/extend/close decisions
"""
