"""
Version 1 of the Loconomy API.
"""
