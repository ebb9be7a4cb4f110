"""
stakepool CLI Tools
"""
