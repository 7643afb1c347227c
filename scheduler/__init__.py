"""
Campaign sync service and interval scheduler
"""
