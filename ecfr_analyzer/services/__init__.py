"""
eCFR Analyzer - Pipeline and Query Services
"""
