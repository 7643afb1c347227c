"""
Campaign Automation API
"""
