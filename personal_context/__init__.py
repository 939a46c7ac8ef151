"""
Personal context server: encrypted personal-data store behind a tool-call API.
"""
__version__ = "1.0.0"
