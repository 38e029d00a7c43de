"""
Sidecar Bootstrap
"""
