"""
Standby Core Module

Data model, error taxonomy, and the control-plane service.
"""
