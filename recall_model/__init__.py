"""
recall_model: forgetting-curve memory model, parameter fitting and review scheduling
"""
__version__ = "0.1.0"
