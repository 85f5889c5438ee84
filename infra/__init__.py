"""
============================================================================
Project Margin DCA v1.0.0 - Infrastructure (Database Engine, Metrics)
============================================================================
"""
