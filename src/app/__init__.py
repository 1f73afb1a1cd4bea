"""
School Tasks API.
"""
