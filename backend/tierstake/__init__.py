"""
Staking participation ranking and governed parameter service
"""
__version__ = "0.1.0"
