"""
Storage contracts and their in-process implementations.
"""
