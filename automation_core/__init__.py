"""
Campaign automation core: models, configuration, storage and assistant tools
"""
