"""
Approvals Service package.
"""
