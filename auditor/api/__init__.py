"""
REST API for starting audits and reading their results.
"""
