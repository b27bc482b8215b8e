"""
Spam-guarded notification dispatch for audit results.
"""
